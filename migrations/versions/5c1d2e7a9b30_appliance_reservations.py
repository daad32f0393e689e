"""appliance reservations

Revision ID: 5c1d2e7a9b30
Revises:
Create Date: 2026-10-18 09:12:44.318205

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1d2e7a9b30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the appliance and reservation_log tables."""
    op.create_table(
        "appliance",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("reservation_end", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.CheckConstraint(
            "created_at > 0 AND updated_at >= created_at", name="ck_appliance_times"
        ),
        sa.CheckConstraint(
            "reservation_end IS NULL OR reservation_end > 0",
            name="ck_appliance_reservation_end",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index(
        op.f("ix_appliance_reservation_end"), "appliance", ["reservation_end"], unique=False
    )

    op.create_table(
        "reservation_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("appliance_id", sa.Integer(), nullable=False),
        sa.Column("appliance_name", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("duration_minutes", sa.SmallInteger(), nullable=True),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["appliance_id"], ["appliance.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_reservation_log_appliance_id"), "reservation_log", ["appliance_id"], unique=False
    )
    op.create_index(
        op.f("ix_reservation_log_timestamp"), "reservation_log", ["timestamp"], unique=False
    )


def downgrade() -> None:
    """Drop the reservation tables."""
    op.drop_index(op.f("ix_reservation_log_timestamp"), table_name="reservation_log")
    op.drop_index(op.f("ix_reservation_log_appliance_id"), table_name="reservation_log")
    op.drop_table("reservation_log")
    op.drop_index(op.f("ix_appliance_reservation_end"), table_name="appliance")
    op.drop_table("appliance")
