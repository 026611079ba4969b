import uuid

import gatherings.workers.promotion_sweeper as sweeper
from gatherings.domain.reservations import ReservationStatus as St
from tests.conftest import mk_res, seed, statuses

import pytest
pytestmark = pytest.mark.asyncio


async def test_sweep_fills_slots_freed_outside_the_coordinator(store, coordinator, notifier):
    g = await store.create_gathering(title="sweep", capacity=2)
    # a withdrawal written straight to the store: one going, three waiting
    rows = [
        mk_res(g, St.GOING, minutes=0),
        mk_res(g, St.DECLINED, minutes=1),
        mk_res(g, St.WAITLISTED, minutes=2),
        mk_res(g, St.WAITLISTED, minutes=3),
        mk_res(g, St.WAITLISTED, minutes=4),
    ]
    await seed(store, g.id, rows)

    promoted = await sweeper.sweep_once(coordinator, batch=10)

    assert promoted == 1
    st = await statuses(store, g.id)
    assert st[rows[2].user_id] is St.GOING
    assert st[rows[3].user_id] is St.WAITLISTED
    await coordinator.wait_notifications()
    assert notifier.calls == [(g.id, [rows[2].user_id])]


async def test_sweep_skips_full_and_unlimited_gatherings(store, coordinator, notifier):
    full = await store.create_gathering(title="full", capacity=1)
    await seed(store, full.id, [mk_res(full, St.GOING), mk_res(full, St.WAITLISTED, minutes=1)])
    open_ = await store.create_gathering(title="open", capacity=None)
    await seed(store, open_.id, [mk_res(open_, St.GOING)])

    assert await sweeper.sweep_once(coordinator, batch=10) == 0
    await coordinator.wait_notifications()
    assert notifier.calls == []


async def test_sweep_is_idempotent(store, coordinator):
    g = await store.create_gathering(title="twice", capacity=3)
    await seed(store, g.id, [mk_res(g, St.WAITLISTED, minutes=i) for i in range(5)])

    assert await sweeper.sweep_once(coordinator, batch=10) == 3
    assert await sweeper.sweep_once(coordinator, batch=10) == 0
    snap = await coordinator.get_capacity_snapshot(g.id)
    assert (snap.going_count, snap.waitlisted_count) == (3, 2)


async def test_sweep_batch_limits_gatherings_per_tick(store, coordinator):
    for i in range(3):
        g = await store.create_gathering(title=f"g{i}", capacity=1)
        await seed(store, g.id, [mk_res(g, St.WAITLISTED)])

    assert await sweeper.sweep_once(coordinator, batch=2) == 2
    assert await sweeper.sweep_once(coordinator, batch=2) == 1


async def test_run_once_skips_when_lock_is_held(monkeypatch, coordinator):
    async def _taken():
        return False

    async def _boom(*args, **kwargs):
        raise AssertionError("must not sweep without the lock")

    monkeypatch.setattr(sweeper, "_acquire_lock", _taken)
    monkeypatch.setattr(sweeper, "sweep_once", _boom)

    assert await sweeper.run_once() == 0


async def test_run_once_sweeps_with_lock(monkeypatch, store, coordinator):
    g = await store.create_gathering(title="locked", capacity=1)
    await seed(store, g.id, [mk_res(g, St.WAITLISTED, user_id=uuid.uuid4())])

    async def _got():
        return True

    monkeypatch.setattr(sweeper, "_acquire_lock", _got)
    monkeypatch.setattr(sweeper, "get_coordinator", lambda: coordinator)

    assert await sweeper.run_once() == 1
