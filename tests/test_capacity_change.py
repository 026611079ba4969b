import uuid

from gatherings.domain.errors import CapacityBelowGoing, GatheringNotFound, InvalidCapacity
from gatherings.domain.reservations import ReservationStatus as St
from tests.conftest import statuses

import pytest
pytestmark = pytest.mark.asyncio


async def _fill(coordinator, gathering_id, n):
    users = [uuid.uuid4() for _ in range(n)]
    for u in users:
        await coordinator.request_reservation(gathering_id, u, St.GOING)
    return users


async def test_create_gathering_validates_capacity(coordinator):
    with pytest.raises(InvalidCapacity):
        await coordinator.create_gathering(title="bad", capacity=0)
    g = await coordinator.create_gathering(title="ok", capacity=None)
    snap = await coordinator.get_capacity_snapshot(g.id)
    assert snap.capacity is None and snap.available_slots == -1


async def test_raising_capacity_promotes_in_fifo_order(coordinator, notifier):
    g = await coordinator.create_gathering(title="grow", capacity=2)
    users = await _fill(coordinator, g.id, 6)

    gathering, promoted = await coordinator.change_capacity(g.id, 4)

    assert gathering.capacity == 4
    assert promoted == users[2:4]
    snap = await coordinator.get_capacity_snapshot(g.id)
    assert (snap.going_count, snap.waitlisted_count, snap.available_slots) == (4, 2, 0)
    await coordinator.wait_notifications()
    assert notifier.calls == [(g.id, users[2:4])]


async def test_lifting_the_limit_admits_whole_waitlist(store, coordinator):
    g = await coordinator.create_gathering(title="lift", capacity=1)
    users = await _fill(coordinator, g.id, 4)

    gathering, promoted = await coordinator.change_capacity(g.id, None)

    assert gathering.capacity is None
    assert promoted == users[1:]
    assert set((await statuses(store, g.id)).values()) == {St.GOING}


async def test_capacity_cannot_drop_below_going(coordinator):
    g = await coordinator.create_gathering(title="shrink", capacity=5)
    await _fill(coordinator, g.id, 3)

    with pytest.raises(CapacityBelowGoing):
        await coordinator.change_capacity(g.id, 2)

    gathering, promoted = await coordinator.change_capacity(g.id, 3)
    assert gathering.capacity == 3 and promoted == []
    snap = await coordinator.get_capacity_snapshot(g.id)
    assert snap.is_at_capacity


async def test_change_capacity_unknown_gathering(coordinator):
    with pytest.raises(GatheringNotFound):
        await coordinator.change_capacity(uuid.uuid4(), 3)
