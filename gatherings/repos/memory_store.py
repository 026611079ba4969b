from __future__ import annotations
import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Optional, Sequence

from ..domain.errors import GatheringNotFound
from ..domain.reservations import Gathering, Reservation, ReservationStatus


class _MemorySection:
    def __init__(self, store: "InMemoryReservationStore", gathering: Gathering) -> None:
        self._store = store
        self._gathering = gathering
        self._staged: list[Reservation] = []

    async def load_gathering(self) -> Gathering:
        return self._gathering

    async def load_reservations(self) -> list[Reservation]:
        await asyncio.sleep(0)  # yield like a real round-trip would
        rows = list(self._store._reservations.get(self._gathering.id, []))
        return sorted(rows, key=lambda r: r.created_at)

    async def persist(self, changed: Sequence[Reservation]) -> None:
        await asyncio.sleep(0)
        self._staged.extend(changed)

    async def set_capacity(self, capacity: Optional[int]) -> Gathering:
        self._gathering = replace(self._gathering, capacity=capacity)
        return self._gathering

    def _commit(self) -> None:
        gid = self._gathering.id
        self._store._gatherings[gid] = self._gathering
        rows = self._store._reservations.setdefault(gid, [])
        index = {r.user_id: i for i, r in enumerate(rows)}
        for r in self._staged:
            i = index.get(r.user_id)
            if i is None:
                index[r.user_id] = len(rows)
                rows.append(r)
            else:
                rows[i] = r
        self._staged = []


class InMemoryReservationStore:
    """
    Process-local store for development and tests.
    The per-gathering lock lives with the data it protects; run a single process with it.
    """

    def __init__(self) -> None:
        self._gatherings: dict[uuid.UUID, Gathering] = {}
        self._reservations: dict[uuid.UUID, list[Reservation]] = {}  # insertion order
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}

    def _lock_for(self, gathering_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(gathering_id)
        if lock is None:
            lock = self._locks[gathering_id] = asyncio.Lock()
        return lock

    def _get(self, gathering_id: uuid.UUID) -> Gathering:
        g = self._gatherings.get(gathering_id)
        if g is None:
            raise GatheringNotFound(str(gathering_id))
        return g

    @asynccontextmanager
    async def exclusive(self, gathering_id: uuid.UUID) -> AsyncIterator[_MemorySection]:
        async with self._lock_for(gathering_id):
            section = _MemorySection(self, self._get(gathering_id))
            yield section
            # only reached when the body finished cleanly
            section._commit()

    @asynccontextmanager
    async def read(self, gathering_id: uuid.UUID) -> AsyncIterator[_MemorySection]:
        yield _MemorySection(self, self._get(gathering_id))

    async def create_gathering(self, *, title: Optional[str], capacity: Optional[int]) -> Gathering:
        g = Gathering(id=uuid.uuid4(), capacity=capacity, title=title)
        self._gatherings[g.id] = g
        self._reservations[g.id] = []
        return g

    async def waitlist_candidates(self, *, limit: int) -> list[uuid.UUID]:
        out: list[uuid.UUID] = []
        for gid, rows in self._reservations.items():
            if len(out) >= limit:
                break
            if self._gatherings[gid].capacity is None:
                continue
            if any(r.status is ReservationStatus.WAITLISTED for r in rows):
                out.append(gid)
        return out
