from __future__ import annotations

import logging

from smartmarks.client.errors import FetchError, MutationError, ValidationError
from smartmarks.client.models import Record, RecordId
from smartmarks.client.ports import CollectionStore
from smartmarks.client.session import SessionManager
from smartmarks.client.synchronizer import CollectionSynchronizer

logger = logging.getLogger(__name__)


class CommandLayer:
    """Issues create/delete against the backend on behalf of the signed-in user.

    ``create`` leaves the snapshot alone: the created row comes back through
    the change feed. ``delete`` removes the row from the snapshot right away
    and falls back to a full refresh when the backend rejects the delete.
    """

    def __init__(
        self,
        session: SessionManager,
        synchronizer: CollectionSynchronizer,
        store: CollectionStore,
        collection: str = "bookmarks",
        owner_field: str = "user_id",
    ):
        self._session = session
        self._sync = synchronizer
        self._store = store
        self._collection = collection
        self._owner_field = owner_field

    async def create(self, title: str, url: str) -> Record:
        title = (title or "").strip()
        url = (url or "").strip()
        if not title or not url:
            raise ValidationError("title and url are required")
        identity = self._session.current_identity()
        if identity is None:
            raise ValidationError("sign in to add bookmarks")

        try:
            record = await self._store.insert(
                self._collection,
                {"title": title, "url": url, self._owner_field: identity.id},
            )
        except Exception as exc:
            logger.warning(
                "create_failed", extra={"identity_id": identity.id}, exc_info=True
            )
            if isinstance(exc, MutationError):
                raise
            raise MutationError(f"could not add bookmark: {exc}") from exc

        logger.info(
            "bookmark_created",
            extra={"record_id": record.id, "identity_id": identity.id},
        )
        return record

    async def delete(self, record_id: RecordId) -> None:
        identity = self._session.current_identity()
        if identity is None:
            raise ValidationError("sign in to delete bookmarks")

        self._sync.apply_deleted(record_id)
        try:
            await self._store.delete(self._collection, record_id)
        except Exception as exc:
            logger.warning(
                "delete_failed",
                extra={"record_id": record_id, "identity_id": identity.id},
                exc_info=True,
            )
            await self._restore_after_failed_delete()
            if isinstance(exc, MutationError):
                raise
            raise MutationError(f"could not delete bookmark: {exc}") from exc

        logger.info(
            "bookmark_deleted",
            extra={"record_id": record_id, "identity_id": identity.id},
        )

    async def _restore_after_failed_delete(self) -> None:
        try:
            await self._sync.refresh()
        except FetchError:
            logger.warning("corrective_refresh_failed")
