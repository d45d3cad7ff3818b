from __future__ import annotations

import logging
from collections.abc import Callable

from smartmarks.client.commands import CommandLayer
from smartmarks.client.errors import AuthError, FetchError, MutationError
from smartmarks.client.models import Identity, Record, RecordId
from smartmarks.client.ports import AuthProvider, ChangeFeed, CollectionStore
from smartmarks.client.session import SessionManager
from smartmarks.client.snapshot import Snapshot
from smartmarks.client.synchronizer import CollectionSynchronizer, SyncState

logger = logging.getLogger(__name__)

PageListener = Callable[["BookmarkPage"], None]


class BookmarkPage:
    """View state of the bookmark page.

    Owns one session manager, synchronizer and command layer for its lifetime,
    between :meth:`start` and :meth:`close`. Listeners registered with
    :meth:`on_change` are called whenever something on the page should be
    redrawn.
    """

    def __init__(
        self,
        auth: AuthProvider,
        store: CollectionStore,
        feed: ChangeFeed,
        provider_name: str = "google",
        redirect_to: str = "/",
    ):
        self.session = SessionManager(auth, provider_name, redirect_to)
        self.synchronizer = CollectionSynchronizer(store, feed)
        self.commands = CommandLayer(self.session, self.synchronizer, store)

        self.loading = True
        self.title = ""
        self.url = ""
        self.last_error: str | None = None

        self._listeners: list[PageListener] = []
        self._teardown: list[Callable[[], None]] = []

    @property
    def identity(self) -> Identity | None:
        return self.session.current_identity()

    @property
    def bookmarks(self) -> Snapshot:
        return self.synchronizer.current()

    @property
    def is_live(self) -> bool:
        return self.synchronizer.state is SyncState.LIVE

    @property
    def is_empty(self) -> bool:
        return len(self.bookmarks) == 0

    @property
    def count_label(self) -> str:
        count = len(self.bookmarks)
        return f"{count} bookmark{'' if count == 1 else 's'} saved"

    def on_change(self, listener: PageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self) -> None:
        self._teardown.append(
            self.session.on_identity_change(self._handle_identity_change)
        )
        self._teardown.append(self.synchronizer.add_listener(self._handle_snapshot))
        try:
            await self.session.start()
        except AuthError as exc:
            self.last_error = str(exc)
        finally:
            self.loading = False
            self._notify()

    async def close(self) -> None:
        for remove in self._teardown:
            remove()
        self._teardown.clear()
        self.session.close()
        await self.synchronizer.close()
        self._listeners.clear()

    async def sign_in(self) -> None:
        try:
            await self.session.sign_in()
        except AuthError as exc:
            self._report(exc)

    async def sign_out(self) -> None:
        try:
            await self.session.sign_out()
        except AuthError as exc:
            self._report(exc)

    async def refresh(self) -> bool:
        try:
            await self.synchronizer.refresh()
        except FetchError as exc:
            self._report(exc)
            return False
        self.last_error = None
        self._notify()
        return True

    async def submit(self) -> Record | None:
        try:
            record = await self.commands.create(self.title, self.url)
        except MutationError as exc:
            self._report(exc)
            return None
        self.title = ""
        self.url = ""
        self.last_error = None
        self._notify()
        return record

    async def remove(self, record_id: RecordId) -> bool:
        try:
            await self.commands.delete(record_id)
        except MutationError as exc:
            self._report(exc)
            return False
        return True

    def _handle_identity_change(self, identity: Identity | None) -> None:
        self.synchronizer.attach(identity)
        self._notify()

    def _handle_snapshot(self, snapshot: Snapshot) -> None:
        self._notify()

    def _report(self, exc: Exception) -> None:
        logger.warning("page_error", extra={"error": str(exc)})
        self.last_error = str(exc)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("page_listener_failed")
