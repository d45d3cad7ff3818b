import asyncio

import pytest

from fakes import ALICE, BOB, FakeChangeFeed, FakeCollectionStore, make_record
from helpers import eventually
from smartmarks.client.errors import FetchError
from smartmarks.client.models import RecordCreated
from smartmarks.client.synchronizer import CollectionSynchronizer, SyncState


def _build():
    feed = FakeChangeFeed()
    store = FakeCollectionStore(feed)
    return feed, store, CollectionSynchronizer(store, feed)


@pytest.mark.asyncio
async def test_detached_synchronizer_has_empty_snapshot():
    _, store, sync = _build()

    assert sync.state is SyncState.DETACHED
    assert list(sync.current()) == []
    assert list(await sync.refresh()) == []
    assert store.query_calls == 0


@pytest.mark.asyncio
async def test_refresh_then_created_then_deleted_events():
    feed, store, sync = _build()
    store.seed(make_record(1, 10, title="A"))

    await sync.attach(ALICE)
    assert sync.state is SyncState.LIVE
    assert sync.current().ids() == [1]
    assert feed.kinds() == ["created", "deleted"]

    feed.created(make_record(2, 20, title="B"))
    assert sync.current().ids() == [2, 1]

    feed.deleted(1)
    assert sync.current().ids() == [2]
    assert sync.current()[0].title == "B"


@pytest.mark.asyncio
async def test_duplicate_created_and_deleted_events_are_idempotent():
    feed, store, sync = _build()
    await sync.attach(ALICE)

    feed.created(make_record(3, 30))
    feed.created(make_record(3, 30))
    assert sync.current().ids() == [3]

    feed.deleted(3)
    after_first = sync.current()
    feed.deleted(3)
    assert sync.current() is after_first
    assert list(sync.current()) == []


@pytest.mark.asyncio
async def test_late_refresh_result_is_discarded():
    _, store, sync = _build()
    store.seed(make_record(1, 10))
    await sync.attach(ALICE)

    loop = asyncio.get_running_loop()
    slow, fast = loop.create_future(), loop.create_future()
    store.query_gates = [slow, fast]

    first = asyncio.create_task(sync.refresh())
    await eventually(lambda: store.query_calls == 2)
    store.seed(make_record(2, 20))
    second = asyncio.create_task(sync.refresh())
    await eventually(lambda: store.query_calls == 3)

    fast.set_result(None)
    await second
    assert sync.current().ids() == [2, 1]

    slow.set_result(None)
    await first
    assert sync.current().ids() == [2, 1]


@pytest.mark.asyncio
async def test_events_during_refresh_survive_its_result():
    feed, store, sync = _build()
    store.seed(make_record(1, 10))
    await sync.attach(ALICE)

    gate = asyncio.get_running_loop().create_future()
    store.query_gates = [gate]
    pending = asyncio.create_task(sync.refresh())
    await eventually(lambda: store.query_calls == 2)

    feed.created(make_record(5, 50))
    feed.deleted(1)
    assert sync.current().ids() == [5]

    gate.set_result(None)
    await pending
    assert sync.current().ids() == [5]


@pytest.mark.asyncio
async def test_events_while_loading_are_applied_after_initial_refresh():
    feed, store, sync = _build()
    store.seed(make_record(1, 10))
    gate = asyncio.get_running_loop().create_future()
    store.query_gates = [gate]

    task = sync.attach(ALICE)
    await eventually(lambda: store.query_calls == 1)
    assert sync.state is SyncState.LOADING

    feed.created(make_record(2, 20))
    assert list(sync.current()) == []

    gate.set_result(None)
    await task
    assert sync.state is SyncState.LIVE
    assert sync.current().ids() == [2, 1]


@pytest.mark.asyncio
async def test_sign_out_during_refresh_discards_result():
    feed, store, sync = _build()
    store.seed(make_record(1, 10))
    gate = asyncio.get_running_loop().create_future()
    store.query_gates = [gate]

    task = sync.attach(ALICE)
    await eventually(lambda: store.query_calls == 1)
    sync.detach()

    gate.set_result(None)
    await task
    await sync.wait_idle()
    assert sync.state is SyncState.DETACHED
    assert list(sync.current()) == []
    assert feed.channels == []


@pytest.mark.asyncio
async def test_switching_identity_resubscribes_and_drops_old_events():
    feed, store, sync = _build()
    store.seed(make_record(1, 10, owner_id=ALICE.id))
    store.seed(make_record(2, 20, owner_id=BOB.id))

    await sync.attach(ALICE)
    assert sync.current().ids() == [1]
    old_created_channel = next(c for c in feed.channels if c.kind == "created")

    await sync.attach(BOB)
    assert sync.current().ids() == [2]
    assert feed.log == [
        ("subscribe", "created"),
        ("subscribe", "deleted"),
        ("unsubscribe", "created"),
        ("unsubscribe", "deleted"),
        ("subscribe", "created"),
        ("subscribe", "deleted"),
    ]

    old_created_channel.handler(RecordCreated(make_record(9, 90, owner_id=BOB.id)))
    assert sync.current().ids() == [2]


@pytest.mark.asyncio
async def test_attach_same_identity_twice_is_a_noop():
    _, store, sync = _build()
    await sync.attach(ALICE)

    assert sync.attach(ALICE) is None
    assert store.query_calls == 1


@pytest.mark.asyncio
async def test_records_of_another_owner_are_ignored():
    _, _, sync = _build()
    await sync.attach(ALICE)

    sync.apply_created(make_record(7, 70, owner_id=BOB.id))
    assert list(sync.current()) == []


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_snapshot():
    _, store, sync = _build()
    store.seed(make_record(1, 10))
    await sync.attach(ALICE)

    store.query_error = RuntimeError("database unavailable")
    with pytest.raises(FetchError):
        await sync.refresh()
    assert sync.current().ids() == [1]


@pytest.mark.asyncio
async def test_failed_initial_refresh_stays_loading_until_retry():
    _, store, sync = _build()
    store.seed(make_record(1, 10))
    store.query_error = RuntimeError("database unavailable")

    await sync.attach(ALICE)
    assert sync.state is SyncState.LOADING
    assert list(sync.current()) == []

    store.query_error = None
    await sync.refresh()
    assert sync.state is SyncState.LIVE
    assert sync.current().ids() == [1]


@pytest.mark.asyncio
async def test_listeners_only_hear_real_changes():
    feed, store, sync = _build()
    store.seed(make_record(1, 10))
    seen = []
    remove = sync.add_listener(lambda snapshot: seen.append(snapshot.ids()))

    await sync.attach(ALICE)
    feed.created(make_record(1, 10))
    feed.deleted(404)
    feed.created(make_record(2, 20))
    assert seen == [[1], [2, 1]]

    remove()
    feed.deleted(2)
    assert seen == [[1], [2, 1]]


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others():
    feed, _, sync = _build()
    seen = []

    def broken(snapshot):
        raise RuntimeError("render failed")

    sync.add_listener(broken)
    sync.add_listener(lambda snapshot: seen.append(len(snapshot)))
    await sync.attach(ALICE)
    feed.created(make_record(1, 10))

    assert seen == [0, 1]


@pytest.mark.asyncio
async def test_close_tears_down_subscriptions():
    feed, _, sync = _build()
    await sync.attach(ALICE)
    assert feed.channels

    await sync.close()
    assert feed.channels == []
    assert sync.state is SyncState.DETACHED


@pytest.mark.asyncio
async def test_failed_initial_refresh_is_retried_with_backoff():
    feed = FakeChangeFeed()
    store = FakeCollectionStore(feed)
    sync = CollectionSynchronizer(store, feed, retry_delay=0.01)
    store.seed(make_record(1, 10))
    store.query_error = RuntimeError("database unavailable")

    await sync.attach(ALICE)
    assert sync.state is SyncState.LOADING

    store.query_error = None
    await eventually(lambda: sync.state is SyncState.LIVE)
    assert sync.current().ids() == [1]
    await sync.close()


@pytest.mark.asyncio
async def test_event_after_failed_initial_refresh_reloads():
    feed = FakeChangeFeed()
    store = FakeCollectionStore(feed)
    sync = CollectionSynchronizer(store, feed, retry_delay=60)
    store.seed(make_record(1, 10))
    store.query_error = RuntimeError("database unavailable")
    await sync.attach(ALICE)

    store.query_error = None
    store.seed(make_record(2, 20))
    feed.created(make_record(2, 20))
    await sync.wait_idle()

    assert sync.state is SyncState.LIVE
    assert sync.current().ids() == [2, 1]
    assert store.query_calls == 2
    await sync.close()


@pytest.mark.asyncio
async def test_detach_stops_pending_retry():
    feed = FakeChangeFeed()
    store = FakeCollectionStore(feed)
    sync = CollectionSynchronizer(store, feed, retry_delay=0.01)
    store.query_error = RuntimeError("database unavailable")
    await sync.attach(ALICE)

    sync.detach()
    store.query_error = None
    await asyncio.sleep(0.05)

    assert sync.state is SyncState.DETACHED
    assert store.query_calls == 1
    await sync.close()
