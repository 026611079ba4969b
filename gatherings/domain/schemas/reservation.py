import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Annotated

from ..reservations import CapacitySnapshot, Reservation, ReservationStatus


class ReservationIn(BaseModel):
    status: ReservationStatus


class ReservationDecisionOut(BaseModel):
    status: ReservationStatus
    was_waitlisted: bool = False
    promoted_user_ids: List[uuid.UUID] = Field(default_factory=list)


class ReservationOut(BaseModel):
    gathering_id: uuid.UUID
    user_id: uuid.UUID
    status: ReservationStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_view(cls, r: Reservation) -> "ReservationOut":
        return cls(
            gathering_id=r.gathering_id,
            user_id=r.user_id,
            status=r.status,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )


class AttendeesOut(BaseModel):
    going: List[ReservationOut]
    interested: List[ReservationOut]
    waitlisted: List[ReservationOut]  # FIFO order, head first
    going_count: int
    total_count: int


class CapacityOut(BaseModel):
    capacity: Optional[int] = None
    going_count: int
    waitlisted_count: int
    available_slots: int  # -1 means unlimited
    is_at_capacity: bool
    has_waitlist: bool

    @classmethod
    def from_snapshot(cls, s: CapacitySnapshot) -> "CapacityOut":
        return cls(
            capacity=s.capacity,
            going_count=s.going_count,
            waitlisted_count=s.waitlisted_count,
            available_slots=s.available_slots,
            is_at_capacity=s.is_at_capacity,
            has_waitlist=s.has_waitlist,
        )


class GatheringCreateIn(BaseModel):
    title: Annotated[str, Field(min_length=1, max_length=200)] | None = None
    capacity: Annotated[int, Field(gt=0)] | None = Field(default=None, description="omit for unlimited")


class GatheringPatchIn(BaseModel):
    capacity: Annotated[int, Field(gt=0)] | None = None
    unlimited: bool = False

    @field_validator("unlimited")
    @classmethod
    def not_both(cls, v, info):
        if v and info.data.get("capacity") is not None:
            raise ValueError("set either capacity or unlimited, not both")
        return v


class GatheringOut(BaseModel):
    id: uuid.UUID
    title: str | None = None
    capacity: int | None = None
    snapshot: CapacityOut
