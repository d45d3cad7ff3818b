from __future__ import annotations

import logging
from collections.abc import Callable

from smartmarks.client.errors import AuthError
from smartmarks.client.models import Identity
from smartmarks.client.ports import AuthProvider, Unsubscribe

logger = logging.getLogger(__name__)

IdentityHandler = Callable[[Identity | None], None]


def _same_identity(left: Identity | None, right: Identity | None) -> bool:
    if left is None or right is None:
        return left is right
    return left.id == right.id


class SessionManager:
    """Tracks the signed-in identity reported by an :class:`AuthProvider`.

    Handlers registered with :meth:`on_identity_change` run once per
    transition (sign-in, sign-out, or a switch to another account). Repeated
    provider notifications for the same identity are absorbed here.
    """

    def __init__(
        self,
        provider: AuthProvider,
        provider_name: str = "google",
        redirect_to: str = "/",
    ):
        self._provider = provider
        self._provider_name = provider_name
        self._redirect_to = redirect_to
        self._identity: Identity | None = None
        self._handlers: list[IdentityHandler] = []
        self._provider_unsubscribe: Unsubscribe | None = None

    @property
    def started(self) -> bool:
        return self._provider_unsubscribe is not None

    async def start(self) -> Identity | None:
        if self._provider_unsubscribe is None:
            self._provider_unsubscribe = self._provider.on_auth_state_change(
                self._handle_provider_change
            )
        identity = await self._provider.get_current_session()
        self._set_identity(identity)
        return self._identity

    def close(self) -> None:
        if self._provider_unsubscribe is not None:
            self._provider_unsubscribe()
            self._provider_unsubscribe = None
        self._handlers.clear()

    def current_identity(self) -> Identity | None:
        return self._identity

    def on_identity_change(self, handler: IdentityHandler) -> Unsubscribe:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def sign_in(self) -> None:
        try:
            await self._provider.sign_in_with_provider(
                self._provider_name, self._redirect_to
            )
        except AuthError:
            raise
        except Exception as exc:
            raise AuthError(f"could not start sign-in: {exc}") from exc

    async def sign_out(self) -> None:
        try:
            await self._provider.sign_out()
        except AuthError:
            raise
        except Exception as exc:
            raise AuthError(f"could not sign out: {exc}") from exc
        # Providers that do not echo the sign-out still end the local session.
        self._set_identity(None)

    def _handle_provider_change(self, identity: Identity | None) -> None:
        self._set_identity(identity)

    def _set_identity(self, identity: Identity | None) -> None:
        if _same_identity(self._identity, identity):
            self._identity = identity
            return

        previous, self._identity = self._identity, identity
        logger.info(
            "identity_changed",
            extra={
                "previous_id": getattr(previous, "id", None),
                "identity_id": getattr(identity, "id", None),
            },
        )
        for handler in list(self._handlers):
            try:
                handler(identity)
            except Exception:
                logger.exception("identity_handler_failed")
