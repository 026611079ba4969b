from __future__ import annotations
import uuid
from typing import AsyncContextManager, Optional, Protocol, Sequence

from ..domain.reservations import Gathering, Reservation


class ReservationSection(Protocol):
    """Reads and writes for one gathering, scoped to an open store section."""

    async def load_gathering(self) -> Gathering: ...

    async def load_reservations(self) -> list[Reservation]:
        """Ordered by created_at, then insertion order."""
        ...

    async def persist(self, changed: Sequence[Reservation]) -> None:
        """Stage inserts/updates; they become visible together when the section commits."""
        ...

    async def set_capacity(self, capacity: Optional[int]) -> Gathering: ...


class ReservationStore(Protocol):
    def exclusive(self, gathering_id: uuid.UUID) -> AsyncContextManager[ReservationSection]:
        """
        Exclusive section keyed by gathering id. Commits on normal exit, discards
        everything on error. Raises GatheringNotFound on entry for unknown ids.
        """
        ...

    def read(self, gathering_id: uuid.UUID) -> AsyncContextManager[ReservationSection]:
        """Consistent, non-locking read. Writes made here are discarded."""
        ...

    async def create_gathering(self, *, title: Optional[str], capacity: Optional[int]) -> Gathering: ...

    async def waitlist_candidates(self, *, limit: int) -> list[uuid.UUID]:
        """Gatherings with a finite capacity and at least one waitlisted reservation."""
        ...
