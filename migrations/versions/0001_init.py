"""init schema: gatherings + reservations

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # gatherings
    op.create_table(
        "gatherings",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_gatherings_gatherings_capacity_pos"),
    )

    # reservations
    op.create_table(
        "reservations",
        sa.Column("seq", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("gathering_id", pg.UUID(as_uuid=True), sa.ForeignKey("gatherings.id"), nullable=False),
        sa.Column("user_id", pg.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", pg.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status in ('interested','going','waitlisted','declined')",
            name="ck_reservations_reservations_status",
        ),
        sa.UniqueConstraint("gathering_id", "user_id", name="uq_reservations_gathering_user"),
    )
    op.create_index(
        "ix_reservations_gathering_status_created",
        "reservations",
        ["gathering_id", "status", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_reservations_gathering_status_created", table_name="reservations")
    op.drop_table("reservations")
    op.drop_table("gatherings")
