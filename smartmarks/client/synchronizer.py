"""Keeps an in-memory snapshot of one user's bookmarks in step with the backend.

Two sources feed the snapshot: full refreshes from the collection store and
per-kind change events from the change feed. Refresh results are tagged with
a generation number and events that arrive while a refresh is in flight are
recorded, so a refresh that resolves late never erases a newer change and a
superseded refresh never overwrites a newer one. Every attach or detach opens
a new scope; results and events from an older scope are dropped. A failed
initial load is retried with backoff, or at once when a change event shows the
backend is reachable again.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from smartmarks.client.errors import FetchError, StaleResultDiscarded
from smartmarks.client.models import (
    EVENT_CREATED,
    EVENT_DELETED,
    ChangeEvent,
    Identity,
    Record,
    RecordCreated,
    RecordDeleted,
    RecordId,
)
from smartmarks.client.ports import ChangeFeed, ChannelHandle, CollectionStore
from smartmarks.client.snapshot import (
    EMPTY,
    Snapshot,
    from_records,
    insert_record,
    remove_record,
)

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


class SyncState(enum.Enum):
    DETACHED = "detached"
    LOADING = "loading"
    LIVE = "live"


def _fold(snapshot: Snapshot, event: ChangeEvent) -> Snapshot:
    if isinstance(event, RecordCreated):
        return insert_record(snapshot, event.record)
    return remove_record(snapshot, event.record_id)


class CollectionSynchronizer:
    def __init__(
        self,
        store: CollectionStore,
        feed: ChangeFeed,
        collection: str = "bookmarks",
        owner_field: str = "user_id",
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ):
        self._store = store
        self._feed = feed
        self._collection = collection
        self._owner_field = owner_field
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay

        self._snapshot: Snapshot = EMPTY
        self._state = SyncState.DETACHED
        self._identity: Identity | None = None
        self._scope = 0

        self._generation = 0
        self._applied_generation = 0
        # generation -> event sequence number at the time the refresh was issued
        self._inflight: dict[int, int] = {}
        self._event_seq = 0
        self._event_log: list[tuple[int, ChangeEvent]] = []

        self._channels: list[ChannelHandle] = []
        self._channel_lock = asyncio.Lock()
        self._listeners: list[SnapshotListener] = []
        self._tasks: set[asyncio.Task] = set()
        # set while the initial load of the current scope has failed
        self._load_failed = False
        self._retry: asyncio.Task | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def identity(self) -> Identity | None:
        return self._identity

    def current(self) -> Snapshot:
        return self._snapshot

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -- scope lifecycle -------------------------------------------------

    def attach(self, identity: Identity | None) -> asyncio.Task | None:
        """Start synchronizing ``identity``'s records, replacing any prior scope.

        Returns the task that subscribes and performs the initial refresh, or
        ``None`` when nothing needs to happen.
        """
        if identity is None:
            self.detach()
            return None
        if (
            self._state is not SyncState.DETACHED
            and self._identity is not None
            and self._identity.id == identity.id
        ):
            self._identity = identity
            return None

        scope = self._open_scope(identity, SyncState.LOADING)
        logger.info(
            "sync_attached", extra={"identity_id": identity.id, "scope": scope}
        )
        return self._spawn(self._establish(scope, identity))

    def detach(self) -> None:
        if self._state is SyncState.DETACHED and self._identity is None:
            return
        scope = self._open_scope(None, SyncState.DETACHED)
        logger.info("sync_detached", extra={"scope": scope})
        if self._channels:
            self._spawn(self._release_channels())

    async def close(self) -> None:
        self.detach()
        await self.wait_idle()
        async with self._channel_lock:
            await self._close_channels()
        self._listeners.clear()

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _open_scope(self, identity: Identity | None, state: SyncState) -> int:
        self._scope += 1
        self._identity = identity
        self._state = state
        self._inflight.clear()
        self._event_log.clear()
        self._load_failed = False
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None
        self._publish(EMPTY)
        return self._scope

    async def _establish(self, scope: int, identity: Identity) -> None:
        async with self._channel_lock:
            await self._close_channels()
            if scope != self._scope:
                return
            filters = {self._owner_field: identity.id}
            for kind, handler in (
                (EVENT_CREATED, self._created_handler(scope)),
                (EVENT_DELETED, self._deleted_handler(scope)),
            ):
                try:
                    channel = await self._feed.subscribe(
                        self._collection, kind, filters, handler
                    )
                except Exception:
                    logger.exception(
                        "subscription_failed",
                        extra={"kind": kind, "identity_id": identity.id},
                    )
                    continue
                self._channels.append(channel)
            if scope != self._scope:
                await self._close_channels()
                return

        if scope != self._scope:
            return
        try:
            await self.refresh()
        except FetchError:
            self._schedule_retry(scope, self._retry_delay)

    def _schedule_retry(self, scope: int, delay: float) -> None:
        # The view stays LOADING until a retry, a received event or an
        # explicit refresh() loads the collection.
        if scope != self._scope or self._state is not SyncState.LOADING:
            return
        self._load_failed = True
        logger.info("initial_load_retry", extra={"scope": scope, "delay": delay})
        self._retry = asyncio.get_running_loop().create_task(
            self._retry_load(scope, delay)
        )
        self._retry.add_done_callback(self._task_done)

    async def _retry_load(self, scope: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if scope != self._scope or self._state is not SyncState.LOADING:
            return
        try:
            await self.refresh()
        except FetchError:
            self._schedule_retry(scope, min(delay * 2, self._max_retry_delay))

    async def _recover(self, scope: int) -> None:
        if scope != self._scope or self._state is not SyncState.LOADING:
            return
        try:
            await self.refresh()
        except FetchError:
            return

    async def _release_channels(self) -> None:
        async with self._channel_lock:
            await self._close_channels()

    async def _close_channels(self) -> None:
        channels, self._channels = self._channels, []
        for channel in channels:
            try:
                await self._feed.unsubscribe(channel)
            except Exception:
                logger.exception("unsubscribe_failed", extra={"kind": channel.kind})

    def _created_handler(self, scope: int) -> Callable[[ChangeEvent], None]:
        def handle(event: ChangeEvent) -> None:
            if scope != self._scope:
                logger.debug("event_discarded", extra={"scope": scope})
                return
            self.apply_created(event.record)

        return handle

    def _deleted_handler(self, scope: int) -> Callable[[ChangeEvent], None]:
        def handle(event: ChangeEvent) -> None:
            if scope != self._scope:
                logger.debug("event_discarded", extra={"scope": scope})
                return
            self.apply_deleted(event.record_id)

        return handle

    # -- folds -----------------------------------------------------------

    def apply_created(self, record: Record) -> Snapshot:
        if self._identity is not None and not self._owned(record):
            logger.warning(
                "foreign_record_ignored",
                extra={"record_id": record.id, "owner_id": record.owner_id},
            )
            return self._snapshot
        return self._receive(RecordCreated(record))

    def apply_deleted(self, record_id: RecordId) -> Snapshot:
        return self._receive(RecordDeleted(record_id))

    def _receive(self, event: ChangeEvent) -> Snapshot:
        if self._state is SyncState.DETACHED:
            return self._snapshot

        self._event_seq += 1
        if self._inflight:
            self._event_log.append((self._event_seq, event))
        elif self._load_failed and self._state is SyncState.LOADING:
            # Nothing is loading; a fresh query will include this change.
            self._spawn(self._recover(self._scope))
        if self._state is SyncState.LIVE:
            self._publish(_fold(self._snapshot, event))
        return self._snapshot

    def _owned(self, record: Record) -> bool:
        return record.owner_id is None or record.owner_id == self._identity.id

    # -- refresh ---------------------------------------------------------

    async def refresh(self) -> Snapshot:
        """Replace the snapshot with the backend's current records.

        Raises :class:`FetchError` when the query fails; the previous snapshot
        is left untouched. A result that has been overtaken by a newer refresh
        or by a change of identity is dropped without error.
        """
        identity = self._identity
        if identity is None:
            return self._snapshot

        scope = self._scope
        self._generation += 1
        generation = self._generation
        self._inflight[generation] = self._event_seq

        try:
            records = await self._store.query(
                self._collection,
                {self._owner_field: identity.id},
                order_by="created_at",
                descending=True,
            )
        except Exception as exc:
            if scope != self._scope:
                return self._snapshot
            self._inflight.pop(generation, None)
            self._trim_event_log()
            logger.warning(
                "refresh_failed",
                extra={"identity_id": identity.id, "generation": generation},
                exc_info=True,
            )
            if isinstance(exc, FetchError):
                raise
            raise FetchError(f"could not load bookmarks: {exc}") from exc

        try:
            self._apply_refresh(scope, generation, records)
        except StaleResultDiscarded as stale:
            logger.debug(
                "refresh_discarded",
                extra={"generation": stale.generation, "current": stale.current},
            )
        return self._snapshot

    def _apply_refresh(
        self, scope: int, generation: int, records: Iterable[Record]
    ) -> None:
        if scope != self._scope:
            raise StaleResultDiscarded(generation, self._generation)
        issued_at = self._inflight.pop(generation, None)
        if issued_at is None or generation <= self._applied_generation:
            raise StaleResultDiscarded(generation, self._applied_generation)

        snapshot = from_records(record for record in records if self._owned(record))
        for seq, event in self._event_log:
            if seq > issued_at:
                snapshot = _fold(snapshot, event)

        for older in [gen for gen in self._inflight if gen < generation]:
            del self._inflight[older]
        self._applied_generation = generation
        self._state = SyncState.LIVE
        self._load_failed = False
        self._trim_event_log()
        self._publish(snapshot)

    def _trim_event_log(self) -> None:
        if not self._inflight:
            self._event_log.clear()
            return
        oldest = min(self._inflight.values())
        self._event_log = [entry for entry in self._event_log if entry[0] > oldest]

    # -- plumbing --------------------------------------------------------

    def _publish(self, snapshot: Snapshot) -> None:
        if snapshot is self._snapshot:
            return
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("snapshot_listener_failed")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("sync_task_failed", exc_info=exc)
