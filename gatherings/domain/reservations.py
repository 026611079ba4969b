from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class ReservationStatus(str, enum.Enum):
    INTERESTED = "interested"
    GOING = "going"
    WAITLISTED = "waitlisted"
    DECLINED = "declined"


@dataclass(frozen=True)
class Gathering:
    """Read-only view of a gathering. capacity=None means unlimited."""
    id: uuid.UUID
    capacity: Optional[int] = None
    title: Optional[str] = None

    @property
    def has_capacity(self) -> bool:
        return self.capacity is not None and self.capacity > 0

    def can_admit(self, going_count: int) -> bool:
        if not self.has_capacity:
            return True
        return going_count < self.capacity


@dataclass(frozen=True)
class Reservation:
    gathering_id: uuid.UUID
    user_id: uuid.UUID
    status: ReservationStatus
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class CreateOutcome:
    reservation: Reservation
    was_waitlisted: bool = False

    @property
    def changed(self) -> list[Reservation]:
        return [self.reservation]


@dataclass(frozen=True)
class UpdateOutcome:
    reservation: Reservation
    was_waitlisted: bool = False
    promoted: list[Reservation] = field(default_factory=list)  # oldest first

    @property
    def promoted_user_ids(self) -> list[uuid.UUID]:
        return [r.user_id for r in self.promoted]

    @property
    def changed(self) -> list[Reservation]:
        return [self.reservation, *self.promoted]


@dataclass(frozen=True)
class CapacitySnapshot:
    capacity: Optional[int]
    going_count: int
    waitlisted_count: int
    available_slots: int  # -1 means unlimited
    is_at_capacity: bool
    has_waitlist: bool


@dataclass(frozen=True)
class Attendees:
    going: list[Reservation]
    interested: list[Reservation]
    waitlisted: list[Reservation]  # FIFO order
    going_count: int
    total_count: int
