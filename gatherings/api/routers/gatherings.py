from __future__ import annotations
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from ...auth.deps import Principal, require_admin
from ...domain.errors import CapacityBelowGoing, GatheringNotFound, InvalidCapacity, StaleSnapshot, StoreUnavailable
from ...domain.schemas.reservation import CapacityOut, GatheringCreateIn, GatheringOut, GatheringPatchIn
from ...services.coordinator import ReservationCoordinator, get_coordinator

router = APIRouter(tags=["gatherings"])


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="store unavailable",
        headers={"Retry-After": "1"},
    )


async def _gathering_out(coordinator: ReservationCoordinator, gathering_id: uuid.UUID) -> GatheringOut:
    g, snap = await coordinator.get_gathering(gathering_id)
    return GatheringOut(id=g.id, title=g.title, capacity=g.capacity, snapshot=CapacityOut.from_snapshot(snap))


# ---------- Public ----------
@router.get("/gatherings/{gathering_id}", response_model=GatheringOut)
async def get_gathering(
    gathering_id: uuid.UUID,
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    try:
        return await _gathering_out(coordinator, gathering_id)
    except GatheringNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="gathering not found")
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()


# ---------- Admin ----------
@router.post("/admin/gatherings", response_model=GatheringOut, status_code=status.HTTP_201_CREATED)
async def create_gathering(
    payload: GatheringCreateIn,
    _admin: Principal = Depends(require_admin),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    try:
        g = await coordinator.create_gathering(title=payload.title, capacity=payload.capacity)
        return await _gathering_out(coordinator, g.id)
    except InvalidCapacity as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()


@router.patch("/admin/gatherings/{gathering_id}", response_model=GatheringOut)
async def patch_gathering(
    gathering_id: uuid.UUID,
    payload: GatheringPatchIn,
    _admin: Principal = Depends(require_admin),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    try:
        if payload.unlimited or payload.capacity is not None:
            await coordinator.change_capacity(gathering_id, None if payload.unlimited else payload.capacity)
        return await _gathering_out(coordinator, gathering_id)
    except GatheringNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="gathering not found")
    except CapacityBelowGoing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="capacity cannot be set below the current going count",
        )
    except InvalidCapacity as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except (StoreUnavailable, StaleSnapshot):
        raise _unavailable()
