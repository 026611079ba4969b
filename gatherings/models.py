from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects import postgresql as pg
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .domain.reservations import Gathering as GatheringView, Reservation as ReservationView, ReservationStatus


# ---------- Base & naming ----------
class Base(DeclarativeBase):
    # Keep index/constraint names stable for cleaner migrations
    metadata = sa.MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


# ---------- GATHERINGS ----------
class Gathering(Base):
    __tablename__ = "gatherings"

    id: Mapped[uuid.UUID] = mapped_column(pg.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # NULL means unlimited
    capacity: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")
    )

    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity > 0", name="gatherings_capacity_pos"),
    )

    def to_view(self) -> GatheringView:
        return GatheringView(id=self.id, capacity=self.capacity, title=self.title)


# ---------- RESERVATIONS ----------
class Reservation(Base):
    __tablename__ = "reservations"

    # insertion order; tie-breaker for equal created_at
    seq: Mapped[int] = mapped_column(sa.BigInteger, primary_key=True, autoincrement=True)

    gathering_id: Mapped[uuid.UUID] = mapped_column(pg.UUID(as_uuid=True), ForeignKey("gatherings.id"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(pg.UUID(as_uuid=True), nullable=False)

    status: Mapped[str] = mapped_column(sa.Text, nullable=False)  # 'interested' | 'going' | 'waitlisted' | 'declined'

    created_at: Mapped[datetime] = mapped_column(pg.TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(pg.TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status in ('interested','going','waitlisted','declined')",
            name="reservations_status",
        ),
        UniqueConstraint("gathering_id", "user_id", name="uq_reservations_gathering_user"),
        Index("ix_reservations_gathering_status_created", "gathering_id", "status", "created_at"),
    )

    def to_view(self) -> ReservationView:
        return ReservationView(
            gathering_id=self.gathering_id,
            user_id=self.user_id,
            status=ReservationStatus(self.status),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
