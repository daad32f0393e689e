# src/laundry_sync/models/appliance.py
"""SQLAlchemy model for shared appliances."""

from sqlalchemy import BigInteger, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from laundry_sync.db.session import Base
from laundry_sync.schemas.appliance import APPLIANCE_NAME_MAX_LENGTH


class Appliance(Base):
    """A washer or dryer that can be reserved until an instant.

    Only the reservation end is stored. Availability is always derived from it
    at read time, so there is deliberately no status column.
    """

    __tablename__ = "appliance"
    __table_args__ = (
        CheckConstraint("created_at > 0 AND updated_at >= created_at", name="ck_appliance_times"),
        CheckConstraint(
            "reservation_end IS NULL OR reservation_end > 0",
            name="ck_appliance_reservation_end",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(
        String(APPLIANCE_NAME_MAX_LENGTH), nullable=False, unique=True
    )
    # Epoch seconds; NULL while the appliance is free.
    reservation_end: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
