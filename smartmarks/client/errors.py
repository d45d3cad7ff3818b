class SmartmarksError(Exception):
    """Base class for client-side failures."""


class AuthError(SmartmarksError):
    """Sign-in or sign-out could not be initiated."""


class FetchError(SmartmarksError):
    """The collection query failed."""


class MutationError(SmartmarksError):
    """A create or delete was rejected or never reached the backend."""


class ValidationError(MutationError):
    """A command's preconditions were not met; nothing was sent."""


class StaleResultDiscarded(SmartmarksError):
    """An asynchronous result belongs to a superseded generation or scope."""

    def __init__(self, generation: int, current: int):
        super().__init__(f"generation {generation} superseded by {current}")
        self.generation = generation
        self.current = current
