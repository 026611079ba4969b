from __future__ import annotations
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain.errors import GatheringNotFound, ReservationError, StaleSnapshot, StoreUnavailable
from ..domain.reservations import Gathering, Reservation, ReservationStatus
from ..models import Gathering as GatheringModel, Reservation as ReservationModel

log = logging.getLogger("gatherings.store")

# serialization_failure, deadlock_detected
_CONFLICT_SQLSTATES = {"40001", "40P01"}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_error(exc: Exception) -> ReservationError:
    if isinstance(exc, IntegrityError):
        # unique (gathering_id, user_id) hit: someone wrote the same row behind our lock
        return StaleSnapshot(str(exc.orig))
    if isinstance(exc, DBAPIError) and _sqlstate(exc) in _CONFLICT_SQLSTATES:
        return StaleSnapshot(str(exc.orig))
    return StoreUnavailable(str(exc))


async def _rollback_quietly(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError as e:
        log.warning("rollback_failed", extra={"error": str(e)})


# Writers are serialized by the row lock on the gathering, not by the isolation
# level: every statement after the lock must see what the previous holder committed.
WRITE_ISOLATION = "READ COMMITTED"
# one snapshot for both the gathering row and its reservations
READ_ISOLATION = "REPEATABLE READ, READ ONLY"


async def begin_tx(db: AsyncSession, characteristics: str) -> None:
    # SET TRANSACTION must be the first statement of the tx it applies to
    if db.in_transaction():
        await db.rollback()
    await db.execute(text(f"SET TRANSACTION ISOLATION LEVEL {characteristics}"))


class SqlReservationSection:
    def __init__(self, db: AsyncSession, gathering: GatheringModel) -> None:
        self.db = db
        self._gathering = gathering
        self._rows: dict[uuid.UUID, ReservationModel] = {}

    async def load_gathering(self) -> Gathering:
        return self._gathering.to_view()

    async def load_reservations(self) -> list[Reservation]:
        res = await self.db.execute(
            select(ReservationModel)
            .where(ReservationModel.gathering_id == self._gathering.id)
            .order_by(ReservationModel.created_at.asc(), ReservationModel.seq.asc())
        )
        rows = list(res.scalars().all())
        self._rows = {r.user_id: r for r in rows}
        return [r.to_view() for r in rows]

    async def persist(self, changed: Sequence[Reservation]) -> None:
        if not changed:
            return
        missing = [r.user_id for r in changed if r.user_id not in self._rows]
        if missing:
            res = await self.db.execute(
                select(ReservationModel).where(
                    ReservationModel.gathering_id == self._gathering.id,
                    ReservationModel.user_id.in_(missing),
                )
            )
            for row in res.scalars().all():
                self._rows[row.user_id] = row

        for view in changed:
            row = self._rows.get(view.user_id)
            if row is None:
                row = ReservationModel(
                    gathering_id=view.gathering_id,
                    user_id=view.user_id,
                    status=view.status.value,
                    created_at=view.created_at,
                    updated_at=view.updated_at,
                )
                self.db.add(row)
                self._rows[view.user_id] = row
            else:
                row.status = view.status.value
                row.updated_at = view.updated_at
        await self.db.flush()

    async def set_capacity(self, capacity: Optional[int]) -> Gathering:
        self._gathering.capacity = capacity
        await self.db.flush()
        return self._gathering.to_view()


class SqlReservationStore:
    """
    PostgreSQL-backed store. The exclusive section is a READ COMMITTED transaction
    holding SELECT ... FOR UPDATE on the gathering row, so it serializes writers
    across processes, not just inside one. Read sections are REPEATABLE READ, READ ONLY.
    """

    def __init__(self, sessionmaker: async_sessionmaker) -> None:
        self._sessionmaker = sessionmaker

    @asynccontextmanager
    async def exclusive(self, gathering_id: uuid.UUID) -> AsyncIterator[SqlReservationSection]:
        async with self._sessionmaker() as db:
            try:
                await begin_tx(db, WRITE_ISOLATION)
                row = (
                    await db.execute(
                        select(GatheringModel).where(GatheringModel.id == gathering_id).with_for_update()
                    )
                ).scalar_one_or_none()
                if row is None:
                    raise GatheringNotFound(str(gathering_id))
                yield SqlReservationSection(db, row)
                await db.commit()
            except ReservationError:
                await _rollback_quietly(db)
                raise
            except (SQLAlchemyError, OSError) as e:
                await _rollback_quietly(db)
                raise translate_error(e) from e

    @asynccontextmanager
    async def read(self, gathering_id: uuid.UUID) -> AsyncIterator[SqlReservationSection]:
        async with self._sessionmaker() as db:
            try:
                await begin_tx(db, READ_ISOLATION)
                row = await db.get(GatheringModel, gathering_id)
                if row is None:
                    raise GatheringNotFound(str(gathering_id))
                yield SqlReservationSection(db, row)
            except (SQLAlchemyError, OSError) as e:
                raise translate_error(e) from e
            finally:
                await _rollback_quietly(db)

    async def create_gathering(self, *, title: Optional[str], capacity: Optional[int]) -> Gathering:
        async with self._sessionmaker() as db:
            try:
                g = GatheringModel(title=title, capacity=capacity)
                db.add(g)
                await db.flush()
                view = g.to_view()
                await db.commit()
                return view
            except (SQLAlchemyError, OSError) as e:
                await _rollback_quietly(db)
                raise translate_error(e) from e

    async def waitlist_candidates(self, *, limit: int) -> list[uuid.UUID]:
        async with self._sessionmaker() as db:
            try:
                rows = await db.execute(
                    select(GatheringModel.id)
                    .join(ReservationModel, ReservationModel.gathering_id == GatheringModel.id)
                    .where(
                        GatheringModel.capacity.is_not(None),
                        ReservationModel.status == ReservationStatus.WAITLISTED.value,
                    )
                    .distinct()
                    .limit(limit)
                )
                return [r[0] for r in rows.all()]
            except (SQLAlchemyError, OSError) as e:
                raise translate_error(e) from e
