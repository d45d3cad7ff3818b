from smartmarks.client.commands import CommandLayer
from smartmarks.client.errors import (
    AuthError,
    FetchError,
    MutationError,
    SmartmarksError,
    StaleResultDiscarded,
    ValidationError,
)
from smartmarks.client.models import (
    EVENT_CREATED,
    EVENT_DELETED,
    Identity,
    Record,
    RecordCreated,
    RecordDeleted,
)
from smartmarks.client.page import BookmarkPage
from smartmarks.client.session import SessionManager
from smartmarks.client.snapshot import Snapshot
from smartmarks.client.synchronizer import CollectionSynchronizer, SyncState

__all__ = [
    "AuthError",
    "BookmarkPage",
    "CollectionSynchronizer",
    "CommandLayer",
    "EVENT_CREATED",
    "EVENT_DELETED",
    "FetchError",
    "Identity",
    "MutationError",
    "Record",
    "RecordCreated",
    "RecordDeleted",
    "SessionManager",
    "SmartmarksError",
    "Snapshot",
    "StaleResultDiscarded",
    "SyncState",
    "ValidationError",
]
