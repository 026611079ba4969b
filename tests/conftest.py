import os

# IMPORTANT: settings are read at import time, so pin them before any gatherings import
os.environ.setdefault("ENV", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import jwt
import pytest
import pytest_asyncio

from gatherings.auth.jwt import ALGO
from gatherings.config import get_settings
from gatherings.domain.errors import StaleSnapshot, StoreUnavailable
from gatherings.domain.reservations import Gathering, Reservation, ReservationStatus
from gatherings.repos.memory_store import InMemoryReservationStore
from gatherings.services.coordinator import ReservationCoordinator

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------- sessions ----------
def issue_session_token(user_id: uuid.UUID, *, admin: bool = False, expires_in: timedelta = timedelta(minutes=5)) -> str:
    """Mint a cookie the way the identity service does."""
    S = get_settings()
    iat = datetime.now(timezone.utc)
    claims = {"iss": S.APP_NAME, "aud": S.APP_NAME, "sub": str(user_id), "iat": iat, "exp": iat + expires_in}
    if admin:
        claims["adm"] = True
    return jwt.encode(claims, S.JWT_SECRET, algorithm=ALGO)


# ---------- notifiers ----------
class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[uuid.UUID, list[uuid.UUID]]] = []

    async def notify_promoted(self, gathering_id: uuid.UUID, user_ids: Sequence[uuid.UUID]) -> None:
        self.calls.append((gathering_id, list(user_ids)))

    @property
    def promoted(self) -> list[uuid.UUID]:
        return [u for _, ids in self.calls for u in ids]


class FailingNotifier:
    def __init__(self) -> None:
        self.attempts = 0

    async def notify_promoted(self, gathering_id, user_ids) -> None:
        self.attempts += 1
        raise ConnectionError("notification channel down")


# ---------- flaky store ----------
class _FlakySection:
    def __init__(self, inner, store: "FlakyStore") -> None:
        self._inner = inner
        self._store = store

    async def load_gathering(self):
        return await self._inner.load_gathering()

    async def load_reservations(self):
        if self._store.read_failures > 0:
            self._store.read_failures -= 1
            raise StoreUnavailable("connection reset")
        if self._store.stale_reads > 0:
            self._store.stale_reads -= 1
            raise StaleSnapshot("snapshot conflict on read")
        return await self._inner.load_reservations()

    async def persist(self, changed):
        self._store.persist_calls += 1
        if self._store.stale_failures > 0:
            self._store.stale_failures -= 1
            raise StaleSnapshot("concurrent write detected")
        if self._store.persist_failures > 0:
            self._store.persist_failures -= 1
            # stage first, then fail: the section must discard the partial write
            await self._inner.persist(changed[:1])
            raise StoreUnavailable("write failed")
        await self._inner.persist(changed)

    async def set_capacity(self, capacity):
        return await self._inner.set_capacity(capacity)


class FlakyStore:
    """Wraps the in-memory store and injects failures into the next N sections."""

    def __init__(self, inner: InMemoryReservationStore) -> None:
        self.inner = inner
        self.read_failures = 0
        self.stale_reads = 0
        self.persist_failures = 0
        self.stale_failures = 0
        self.persist_calls = 0

    @asynccontextmanager
    async def exclusive(self, gathering_id):
        async with self.inner.exclusive(gathering_id) as section:
            yield _FlakySection(section, self)

    @asynccontextmanager
    async def read(self, gathering_id):
        async with self.inner.read(gathering_id) as section:
            yield _FlakySection(section, self)

    async def create_gathering(self, *, title, capacity):
        return await self.inner.create_gathering(title=title, capacity=capacity)

    async def waitlist_candidates(self, *, limit):
        return await self.inner.waitlist_candidates(limit=limit)


# ---------- fixtures ----------
@pytest.fixture
def store() -> InMemoryReservationStore:
    return InMemoryReservationStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def coordinator(store, notifier):
    c = ReservationCoordinator(store, notifier, retry_backoff_sec=0)
    yield c
    await c.wait_notifications()


# ---------- helpers ----------
def mk_gathering(capacity: Optional[int]) -> Gathering:
    return Gathering(id=uuid.uuid4(), capacity=capacity, title="test gathering")


def mk_res(
    gathering: Gathering,
    status: ReservationStatus,
    *,
    minutes: int = 0,
    user_id: Optional[uuid.UUID] = None,
) -> Reservation:
    ts = T0 + timedelta(minutes=minutes)
    return Reservation(
        gathering_id=gathering.id,
        user_id=user_id or uuid.uuid4(),
        status=status,
        created_at=ts,
        updated_at=ts,
    )


async def seed(store: InMemoryReservationStore, gathering_id: uuid.UUID, reservations: Sequence[Reservation]) -> None:
    async with store.exclusive(gathering_id) as section:
        await section.persist(list(reservations))


async def statuses(store: InMemoryReservationStore, gathering_id: uuid.UUID) -> dict[uuid.UUID, ReservationStatus]:
    async with store.read(gathering_id) as section:
        return {r.user_id: r.status for r in await section.load_reservations()}
