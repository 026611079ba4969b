import asyncio
import logging
import uuid

from gatherings.domain.errors import GatheringNotFound, NotReserved, StaleSnapshot, StoreUnavailable
from gatherings.domain.reservations import ReservationStatus as St
from gatherings.observability.metrics import REGISTRY
from gatherings.services.coordinator import ReservationCoordinator
from tests.conftest import FailingNotifier, FlakyStore, RecordingNotifier, statuses

import pytest
pytestmark = pytest.mark.asyncio


def _sample(name: str, labels: dict | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


async def _full_gathering_with_waitlist(coordinator, store):
    g = await store.create_gathering(title="retry", capacity=1)
    holder, waiter = uuid.uuid4(), uuid.uuid4()
    await coordinator.request_reservation(g.id, holder, St.GOING)
    await coordinator.request_reservation(g.id, waiter, St.GOING)
    return g, holder, waiter


async def test_store_unavailable_is_retried_from_snapshot(store):
    flaky = FlakyStore(store)
    c = ReservationCoordinator(flaky, RecordingNotifier(), max_attempts=3, retry_backoff_sec=0)
    g = await store.create_gathering(title="flaky-read", capacity=2)
    before = _sample("reservation_retries_total", {"reason": "store_unavailable"})

    flaky.read_failures = 2
    d = await c.request_reservation(g.id, uuid.uuid4(), St.GOING)

    assert d.status is St.GOING
    assert _sample("reservation_retries_total", {"reason": "store_unavailable"}) - before == 2


async def test_store_unavailable_surfaces_after_max_attempts(store):
    flaky = FlakyStore(store)
    c = ReservationCoordinator(flaky, RecordingNotifier(), max_attempts=3, retry_backoff_sec=0)
    g = await store.create_gathering(title="down", capacity=2)

    flaky.read_failures = 3
    with pytest.raises(StoreUnavailable):
        await c.request_reservation(g.id, uuid.uuid4(), St.GOING)

    assert (await c.get_capacity_snapshot(g.id)).going_count == 0


async def test_failed_persist_discards_requester_and_promotion_together(store):
    flaky = FlakyStore(store)
    c = ReservationCoordinator(flaky, RecordingNotifier(), max_attempts=1, retry_backoff_sec=0)
    g, holder, waiter = await _full_gathering_with_waitlist(c, store)

    flaky.persist_failures = 1
    with pytest.raises(StoreUnavailable):
        await c.change_reservation(g.id, holder, St.DECLINED)

    st = await statuses(store, g.id)
    assert st[holder] is St.GOING
    assert st[waiter] is St.WAITLISTED


async def test_failed_persist_then_retry_applies_everything_once(store):
    flaky = FlakyStore(store)
    notifier = RecordingNotifier()
    c = ReservationCoordinator(flaky, notifier, max_attempts=3, retry_backoff_sec=0)
    g, holder, waiter = await _full_gathering_with_waitlist(c, store)

    flaky.persist_failures = 1
    d = await c.change_reservation(g.id, holder, St.DECLINED)

    assert d.promoted_user_ids == [waiter]
    st = await statuses(store, g.id)
    assert st == {holder: St.DECLINED, waiter: St.GOING}
    await c.wait_notifications()
    assert notifier.calls == [(g.id, [waiter])]


async def test_stale_snapshot_is_retried_once(store):
    flaky = FlakyStore(store)
    c = ReservationCoordinator(flaky, RecordingNotifier(), max_attempts=3, retry_backoff_sec=0)
    g = await store.create_gathering(title="stale-once", capacity=2)

    flaky.stale_failures = 1
    d = await c.request_reservation(g.id, uuid.uuid4(), St.GOING)

    assert d.status is St.GOING
    assert flaky.persist_calls == 2


async def test_stale_snapshot_twice_is_surfaced(store, caplog):
    flaky = FlakyStore(store)
    c = ReservationCoordinator(flaky, RecordingNotifier(), max_attempts=5, retry_backoff_sec=0)
    g = await store.create_gathering(title="stale-twice", capacity=2)

    flaky.stale_failures = 2
    with caplog.at_level(logging.ERROR, logger="gatherings.coordinator"):
        with pytest.raises(StaleSnapshot):
            await c.request_reservation(g.id, uuid.uuid4(), St.GOING)

    assert flaky.persist_calls == 2
    assert any(r.getMessage() == "stale_snapshot" for r in caplog.records)
    assert (await c.get_capacity_snapshot(g.id)).going_count == 0


async def test_notification_failure_never_fails_the_change(store):
    notifier = FailingNotifier()
    c = ReservationCoordinator(store, notifier, retry_backoff_sec=0)
    g, holder, waiter = await _full_gathering_with_waitlist(c, store)
    before = _sample("promotion_notify_failed_total")

    d = await c.change_reservation(g.id, holder, St.DECLINED)
    await c.wait_notifications()

    assert d.promoted_user_ids == [waiter]
    assert notifier.attempts == 1
    assert _sample("promotion_notify_failed_total") - before == 1
    assert (await statuses(store, g.id))[waiter] is St.GOING


async def test_notification_is_not_awaited_by_the_caller(store):
    release = asyncio.Event()

    class SlowNotifier:
        def __init__(self):
            self.delivered = []

        async def notify_promoted(self, gathering_id, user_ids):
            await release.wait()
            self.delivered.extend(user_ids)

    notifier = SlowNotifier()
    c = ReservationCoordinator(store, notifier, retry_backoff_sec=0)
    g, holder, waiter = await _full_gathering_with_waitlist(c, store)

    d = await asyncio.wait_for(c.change_reservation(g.id, holder, St.DECLINED), timeout=1)

    assert d.promoted_user_ids == [waiter]
    assert notifier.delivered == []
    release.set()
    await c.wait_notifications()
    assert notifier.delivered == [waiter]


async def test_decision_errors_are_not_retried(store):
    flaky = FlakyStore(store)
    c = ReservationCoordinator(flaky, RecordingNotifier(), max_attempts=3, retry_backoff_sec=0)
    g = await store.create_gathering(title="no-retry", capacity=2)

    with pytest.raises(NotReserved):
        await c.change_reservation(g.id, uuid.uuid4(), St.DECLINED)
    with pytest.raises(GatheringNotFound):
        await c.request_reservation(uuid.uuid4(), uuid.uuid4(), St.GOING)
    assert flaky.persist_calls == 0
