from __future__ import annotations
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from ...auth.deps import Principal, get_current_user
from ...domain.errors import AlreadyReserved, GatheringNotFound, NotReserved, StaleSnapshot, StoreUnavailable
from ...domain.schemas.reservation import (
    AttendeesOut,
    CapacityOut,
    ReservationDecisionOut,
    ReservationIn,
    ReservationOut,
)
from ...services.coordinator import ReservationCoordinator, get_coordinator

router = APIRouter(tags=["reservations"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="gathering not found")


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="reservation store unavailable, try again",
        headers={"Retry-After": "1"},
    )


@router.post(
    "/gatherings/{gathering_id}/reservations",
    response_model=ReservationDecisionOut,
    status_code=status.HTTP_201_CREATED,
)
async def request_reservation(
    gathering_id: uuid.UUID,
    payload: ReservationIn,
    current: Principal = Depends(get_current_user),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    # going on a full gathering is a success with was_waitlisted=true, not an error
    try:
        decision = await coordinator.request_reservation(gathering_id, current.user_id, payload.status)
    except GatheringNotFound:
        raise _not_found()
    except AlreadyReserved:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="already reserved; change it instead")
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()
    return ReservationDecisionOut(status=decision.status, was_waitlisted=decision.was_waitlisted)


@router.patch("/gatherings/{gathering_id}/reservations/me", response_model=ReservationDecisionOut)
async def change_reservation(
    gathering_id: uuid.UUID,
    payload: ReservationIn,
    current: Principal = Depends(get_current_user),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    try:
        decision = await coordinator.change_reservation(gathering_id, current.user_id, payload.status)
    except GatheringNotFound:
        raise _not_found()
    except NotReserved:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no reservation for this gathering")
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()
    return ReservationDecisionOut(
        status=decision.status,
        was_waitlisted=decision.was_waitlisted,
        promoted_user_ids=decision.promoted_user_ids,
    )


@router.get("/gatherings/{gathering_id}/reservations/me", response_model=ReservationOut)
async def my_reservation(
    gathering_id: uuid.UUID,
    current: Principal = Depends(get_current_user),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    try:
        r = await coordinator.get_reservation(gathering_id, current.user_id)
    except GatheringNotFound:
        raise _not_found()
    except NotReserved:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no reservation for this gathering")
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()
    return ReservationOut.from_view(r)


# Participants grouped by status; waitlist in promotion order.
@router.get("/gatherings/{gathering_id}/reservations", response_model=AttendeesOut)
async def list_attendees(
    gathering_id: uuid.UUID,
    current: Principal = Depends(get_current_user),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    try:
        a = await coordinator.list_attendees(gathering_id)
    except GatheringNotFound:
        raise _not_found()
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()
    return AttendeesOut(
        going=[ReservationOut.from_view(r) for r in a.going],
        interested=[ReservationOut.from_view(r) for r in a.interested],
        waitlisted=[ReservationOut.from_view(r) for r in a.waitlisted],
        going_count=a.going_count,
        total_count=a.total_count,
    )


@router.get("/gatherings/{gathering_id}/capacity", response_model=CapacityOut)
async def capacity(
    gathering_id: uuid.UUID,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    try:
        snap = await coordinator.get_capacity_snapshot(gathering_id)
    except GatheringNotFound:
        raise _not_found()
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()
    return CapacityOut.from_snapshot(snap)
