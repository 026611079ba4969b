"""
Capacity & waitlist decisions for a single gathering.

Everything here is a pure function over an immutable snapshot: the gathering
plus the reservations the store returned for it (ordered by created_at, then
insertion order). Nothing is persisted here; callers apply the returned
reservations inside the same exclusive section they read the snapshot in.
"""
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from .errors import AlreadyReserved, InvalidCapacity, NotReserved
from .reservations import (
    Attendees,
    CapacitySnapshot,
    CreateOutcome,
    Gathering,
    Reservation,
    ReservationStatus,
    UpdateOutcome,
)

UNLIMITED_SLOTS = -1

GOING = ReservationStatus.GOING
WAITLISTED = ReservationStatus.WAITLISTED


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _find(reservations: Iterable[Reservation], user_id: uuid.UUID) -> Optional[Reservation]:
    for r in reservations:
        if r.user_id == user_id:
            return r
    return None


def validate_capacity(capacity: Optional[int]) -> None:
    if capacity is None:
        return
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise InvalidCapacity("capacity must be a positive integer or unlimited")


def count_going_reservations(reservations: Iterable[Reservation]) -> int:
    return sum(1 for r in reservations if r.status is GOING)


def count_waitlisted_reservations(reservations: Iterable[Reservation]) -> int:
    return sum(1 for r in reservations if r.status is WAITLISTED)


def waitlist_in_order(reservations: Iterable[Reservation]) -> list[Reservation]:
    """Waitlisted reservations, oldest first.

    sorted() is stable, so equal created_at keeps the store's insertion order.
    """
    return sorted((r for r in reservations if r.status is WAITLISTED), key=lambda r: r.created_at)


def available_slots(gathering: Gathering, reservations: Iterable[Reservation]) -> int:
    if not gathering.has_capacity:
        return UNLIMITED_SLOTS
    # floor at 0: pre-existing over-capacity rows must not produce negative slots
    return max(0, gathering.capacity - count_going_reservations(reservations))


def capacity_snapshot(gathering: Gathering, reservations: Sequence[Reservation]) -> CapacitySnapshot:
    going = count_going_reservations(reservations)
    waitlisted = count_waitlisted_reservations(reservations)
    return CapacitySnapshot(
        capacity=gathering.capacity,
        going_count=going,
        waitlisted_count=waitlisted,
        available_slots=available_slots(gathering, reservations),
        is_at_capacity=gathering.has_capacity and going >= gathering.capacity,
        has_waitlist=waitlisted > 0,
    )


def group_by_status(reservations: Sequence[Reservation]) -> Attendees:
    going = [r for r in reservations if r.status is GOING]
    interested = [r for r in reservations if r.status is ReservationStatus.INTERESTED]
    waitlisted = waitlist_in_order(reservations)
    return Attendees(
        going=going,
        interested=interested,
        waitlisted=waitlisted,
        going_count=len(going),
        total_count=len(going) + len(interested) + len(waitlisted),
    )


def can_request_reservation(gathering: Gathering, reservations: Iterable[Reservation], user_id: uuid.UUID) -> None:
    if _find(reservations, user_id) is not None:
        raise AlreadyReserved(f"user {user_id} already has a reservation for gathering {gathering.id}")


def promote_into_free_slots(
    gathering: Gathering,
    reservations: Sequence[Reservation],
    *,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[Reservation]:
    """
    Move the head of the waitlist into free slots, strict FIFO.
    Returns the promoted reservations (status=going, fresh updated_at), oldest first.
    Unlimited gatherings never promote: nobody is waitlisted there.
    """
    if not gathering.has_capacity:
        return []
    free = available_slots(gathering, reservations)
    if limit is not None:
        free = min(free, limit)
    if free <= 0:
        return []
    ts = now or _now_utc()
    return [replace(r, status=GOING, updated_at=ts) for r in waitlist_in_order(reservations)[:free]]


def create_reservation(
    gathering: Gathering,
    reservations: Sequence[Reservation],
    user_id: uuid.UUID,
    requested_status: ReservationStatus | str,
    *,
    now: Optional[datetime] = None,
) -> CreateOutcome:
    requested = ReservationStatus(requested_status)
    can_request_reservation(gathering, reservations, user_id)

    status = requested
    was_waitlisted = False
    if requested is GOING and not gathering.can_admit(count_going_reservations(reservations)):
        status = WAITLISTED
        was_waitlisted = True

    ts = now or _now_utc()
    reservation = Reservation(
        gathering_id=gathering.id,
        user_id=user_id,
        status=status,
        created_at=ts,
        updated_at=ts,
    )
    return CreateOutcome(reservation=reservation, was_waitlisted=was_waitlisted)


def update_reservation(
    gathering: Gathering,
    reservations: Sequence[Reservation],
    user_id: uuid.UUID,
    new_status: ReservationStatus | str,
    *,
    now: Optional[datetime] = None,
) -> UpdateOutcome:
    """
    Apply a status change to an existing reservation.

    - to going: admitted against the *other* users' going count, so re-confirming
      is a no-op; a full gathering turns the request into waitlisted.
    - leaving going: frees exactly one slot; the oldest other waitlisted
      reservation is promoted if the gathering has a finite capacity.
    - waitlisted / interested / declined are accepted without capacity checks.
    """
    requested = ReservationStatus(new_status)
    existing = _find(reservations, user_id)
    if existing is None:
        raise NotReserved(f"user {user_id} has no reservation for gathering {gathering.id}")

    others = [r for r in reservations if r.user_id != user_id]
    ts = now or _now_utc()

    status = requested
    was_waitlisted = False
    if requested is GOING and not gathering.can_admit(count_going_reservations(others)):
        status = WAITLISTED
        was_waitlisted = True

    updated = replace(existing, status=status, updated_at=ts)

    promoted: list[Reservation] = []
    if existing.status is GOING and status is not GOING:
        # single withdrawal -> at most one promotion, capped by what is really free
        promoted = promote_into_free_slots(gathering, others, limit=1, now=ts)

    return UpdateOutcome(reservation=updated, was_waitlisted=was_waitlisted, promoted=promoted)


def admit_whole_waitlist(reservations: Sequence[Reservation], *, now: Optional[datetime] = None) -> list[Reservation]:
    """Used when a gathering's limit is lifted: everyone waiting gets in, oldest first."""
    ts = now or _now_utc()
    return [replace(r, status=GOING, updated_at=ts) for r in waitlist_in_order(reservations)]
