# gatherings/services/coordinator.py
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..config import get_settings
from ..db import SessionLocal
from ..domain import capacity as engine
from ..domain.errors import (
    AlreadyReserved,
    CapacityBelowGoing,
    NotReserved,
    StaleSnapshot,
    StoreUnavailable,
)
from ..domain.reservations import Attendees, CapacitySnapshot, Gathering, Reservation, ReservationStatus
from ..observability.metrics import NOTIFY_FAILED, PROMOTED, RES_DECIDED, RES_REJECTED, RES_RETRIED
from ..repos.memory_store import InMemoryReservationStore
from ..repos.sql_store import SqlReservationStore
from ..repos.store import ReservationStore
from .notifications import Notifier, RedisNotifier

S = get_settings()
log = logging.getLogger("gatherings.coordinator")

T = TypeVar("T")


@dataclass(frozen=True)
class ReservationDecision:
    status: ReservationStatus
    was_waitlisted: bool = False
    promoted_user_ids: list[uuid.UUID] = field(default_factory=list)


class ReservationCoordinator:
    """
    Applies capacity decisions atomically per gathering.

    Every mutation runs read snapshot -> decide -> persist inside one
    store.exclusive(gathering_id) section. Promotion notifications are
    dispatched only after the section has committed and are never awaited
    by the caller.
    """

    def __init__(
        self,
        store: ReservationStore,
        notifier: Notifier,
        *,
        max_attempts: Optional[int] = None,
        retry_backoff_sec: Optional[float] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.max_attempts = max_attempts or S.RESERVATION_MAX_ATTEMPTS
        self.retry_backoff_sec = S.RESERVATION_RETRY_BACKOFF_SEC if retry_backoff_sec is None else retry_backoff_sec
        self._inflight: dict[tuple[Any, ...], asyncio.Task] = {}
        self._notify_tasks: set[asyncio.Task] = set()

    # ---------- reservation requests ----------
    async def request_reservation(
        self, gathering_id: uuid.UUID, user_id: uuid.UUID, desired_status: ReservationStatus | str
    ) -> ReservationDecision:
        desired = ReservationStatus(desired_status)
        key = ("request", gathering_id, user_id, desired)
        return await self._coalesce(key, lambda: self._request(gathering_id, user_id, desired))

    async def change_reservation(
        self, gathering_id: uuid.UUID, user_id: uuid.UUID, new_status: ReservationStatus | str
    ) -> ReservationDecision:
        new = ReservationStatus(new_status)
        key = ("change", gathering_id, user_id, new)
        return await self._coalesce(key, lambda: self._change(gathering_id, user_id, new))

    async def _request(self, gathering_id: uuid.UUID, user_id: uuid.UUID, desired: ReservationStatus) -> ReservationDecision:
        async def attempt():
            async with self.store.exclusive(gathering_id) as section:
                gathering = await section.load_gathering()
                reservations = await section.load_reservations()
                outcome = engine.create_reservation(gathering, reservations, user_id, desired)
                await section.persist(outcome.changed)
            return outcome

        try:
            outcome = await self._with_retries("request", attempt)
        except AlreadyReserved:
            RES_REJECTED.labels(reason="already_reserved").inc()
            raise

        status = outcome.reservation.status
        RES_DECIDED.labels(op="request", outcome=status.value).inc()
        log.info(
            "reservation_requested",
            extra={
                "gathering_id": str(gathering_id),
                "user_id": str(user_id),
                "requested": desired.value,
                "status": status.value,
                "was_waitlisted": outcome.was_waitlisted,
            },
        )
        return ReservationDecision(status=status, was_waitlisted=outcome.was_waitlisted)

    async def _change(self, gathering_id: uuid.UUID, user_id: uuid.UUID, new: ReservationStatus) -> ReservationDecision:
        async def attempt():
            async with self.store.exclusive(gathering_id) as section:
                gathering = await section.load_gathering()
                reservations = await section.load_reservations()
                outcome = engine.update_reservation(gathering, reservations, user_id, new)
                # requester + promotions commit together or not at all
                await section.persist(outcome.changed)
            return outcome

        try:
            outcome = await self._with_retries("change", attempt)
        except NotReserved:
            RES_REJECTED.labels(reason="not_reserved").inc()
            raise

        status = outcome.reservation.status
        promoted_ids = outcome.promoted_user_ids
        RES_DECIDED.labels(op="change", outcome=status.value).inc()
        log.info(
            "reservation_changed",
            extra={
                "gathering_id": str(gathering_id),
                "user_id": str(user_id),
                "requested": new.value,
                "status": status.value,
                "was_waitlisted": outcome.was_waitlisted,
                "promoted": [str(u) for u in promoted_ids],
            },
        )
        if promoted_ids:
            PROMOTED.labels(trigger="withdrawal").inc(len(promoted_ids))
            self._dispatch_promotions(gathering_id, promoted_ids)
        return ReservationDecision(status=status, was_waitlisted=outcome.was_waitlisted, promoted_user_ids=promoted_ids)

    # ---------- reads ----------
    async def get_capacity_snapshot(self, gathering_id: uuid.UUID) -> CapacitySnapshot:
        async def attempt():
            async with self.store.read(gathering_id) as section:
                gathering = await section.load_gathering()
                reservations = await section.load_reservations()
            return engine.capacity_snapshot(gathering, reservations)

        return await self._with_retries("snapshot", attempt)

    async def get_gathering(self, gathering_id: uuid.UUID) -> tuple[Gathering, CapacitySnapshot]:
        async def attempt():
            async with self.store.read(gathering_id) as section:
                gathering = await section.load_gathering()
                reservations = await section.load_reservations()
            return gathering, engine.capacity_snapshot(gathering, reservations)

        return await self._with_retries("gathering", attempt)

    async def get_reservation(self, gathering_id: uuid.UUID, user_id: uuid.UUID) -> Reservation:
        async def attempt():
            async with self.store.read(gathering_id) as section:
                reservations = await section.load_reservations()
            for r in reservations:
                if r.user_id == user_id:
                    return r
            raise NotReserved(f"user {user_id} has no reservation for gathering {gathering_id}")

        return await self._with_retries("reservation", attempt)

    async def list_attendees(self, gathering_id: uuid.UUID) -> Attendees:
        async def attempt():
            async with self.store.read(gathering_id) as section:
                reservations = await section.load_reservations()
            return engine.group_by_status(reservations)

        return await self._with_retries("attendees", attempt)

    # ---------- gathering management ----------
    async def create_gathering(self, *, title: Optional[str], capacity: Optional[int]) -> Gathering:
        engine.validate_capacity(capacity)
        g = await self.store.create_gathering(title=title, capacity=capacity)
        log.info("gathering_created", extra={"gathering_id": str(g.id), "capacity": capacity})
        return g

    async def change_capacity(self, gathering_id: uuid.UUID, new_capacity: Optional[int]) -> tuple[Gathering, list[uuid.UUID]]:
        """
        Set a new capacity (None = unlimited). Cannot drop below the current going count.
        Raising or lifting the limit promotes from the waitlist in the same section.
        """
        engine.validate_capacity(new_capacity)

        async def attempt():
            async with self.store.exclusive(gathering_id) as section:
                reservations = await section.load_reservations()
                going = engine.count_going_reservations(reservations)
                if new_capacity is not None and new_capacity < going:
                    raise CapacityBelowGoing(f"capacity {new_capacity} < going {going}")
                gathering = await section.set_capacity(new_capacity)
                if gathering.has_capacity:
                    promoted = engine.promote_into_free_slots(gathering, reservations)
                else:
                    promoted = engine.admit_whole_waitlist(reservations)
                await section.persist(promoted)
            return gathering, promoted

        gathering, promoted = await self._with_retries("capacity", attempt)
        promoted_ids = [r.user_id for r in promoted]
        log.info(
            "gathering_capacity_changed",
            extra={"gathering_id": str(gathering_id), "capacity": new_capacity, "promoted": [str(u) for u in promoted_ids]},
        )
        if promoted_ids:
            PROMOTED.labels(trigger="capacity").inc(len(promoted_ids))
            self._dispatch_promotions(gathering_id, promoted_ids)
        return gathering, promoted_ids

    async def sweep_waitlist(self, gathering_id: uuid.UUID) -> list[uuid.UUID]:
        """Promote into any free slots; catches withdrawals that bypassed this coordinator."""
        async def attempt():
            async with self.store.exclusive(gathering_id) as section:
                gathering = await section.load_gathering()
                reservations = await section.load_reservations()
                promoted = engine.promote_into_free_slots(gathering, reservations)
                await section.persist(promoted)
            return promoted

        promoted = await self._with_retries("sweep", attempt)
        promoted_ids = [r.user_id for r in promoted]
        if promoted_ids:
            log.info("waitlist_swept", extra={"gathering_id": str(gathering_id), "promoted": [str(u) for u in promoted_ids]})
            PROMOTED.labels(trigger="sweep").inc(len(promoted_ids))
            self._dispatch_promotions(gathering_id, promoted_ids)
        return promoted_ids

    # ---------- plumbing ----------
    async def _coalesce(self, key: tuple[Any, ...], run: Callable[[], Awaitable[T]]) -> T:
        # identical requests still in flight share one execution
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(run())
            self._inflight[key] = task

            def _forget(t: asyncio.Task, k=key) -> None:
                if self._inflight.get(k) is t:
                    del self._inflight[k]

            task.add_done_callback(_forget)
        # a cancelled caller must not cancel a decision halfway through
        return await asyncio.shield(task)

    async def _with_retries(self, op: str, attempt: Callable[[], Awaitable[T]]) -> T:
        tries = 0
        stale_retried = False
        while True:
            tries += 1
            try:
                return await attempt()
            except StaleSnapshot as e:
                if stale_retried:
                    raise
                stale_retried = True
                RES_RETRIED.labels(reason="stale_snapshot").inc()
                log.error("stale_snapshot", extra={"op": op, "attempt": tries, "error": str(e)})
            except StoreUnavailable as e:
                if tries >= self.max_attempts:
                    raise
                RES_RETRIED.labels(reason="store_unavailable").inc()
                log.warning("store_unavailable_retry", extra={"op": op, "attempt": tries, "error": str(e)})
                await asyncio.sleep(self.retry_backoff_sec * tries)

    def _dispatch_promotions(self, gathering_id: uuid.UUID, user_ids: list[uuid.UUID]) -> None:
        task = asyncio.create_task(self._notify(gathering_id, user_ids))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _notify(self, gathering_id: uuid.UUID, user_ids: list[uuid.UUID]) -> None:
        try:
            await self.notifier.notify_promoted(gathering_id, user_ids)
        except Exception as e:
            # best effort: the committed reservation state is the source of truth
            NOTIFY_FAILED.inc()
            log.warning(
                "notify_failed",
                extra={"gathering_id": str(gathering_id), "user_ids": [str(u) for u in user_ids], "error": str(e)},
            )

    async def wait_notifications(self) -> None:
        if self._notify_tasks:
            await asyncio.gather(*list(self._notify_tasks), return_exceptions=True)


def build_store() -> ReservationStore:
    if S.STORE_BACKEND == "memory":
        return InMemoryReservationStore()
    return SqlReservationStore(SessionLocal)


def get_coordinator() -> ReservationCoordinator:
    global _COORDINATOR_SINGLETON
    try:
        return _COORDINATOR_SINGLETON  # type: ignore[name-defined]
    except NameError:
        _COORDINATOR_SINGLETON = ReservationCoordinator(build_store(), RedisNotifier())  # type: ignore[assignment]
        return _COORDINATOR_SINGLETON
