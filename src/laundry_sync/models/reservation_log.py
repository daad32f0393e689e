"""SQLAlchemy model for the reservation audit trail."""

from sqlalchemy import BigInteger, ForeignKey, Integer, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from laundry_sync.db.session import Base

ACTION_RESERVE = "reserve"
ACTION_RELEASE = "release"
ACTION_EXPIRE = "expire"
RESERVATION_ACTIONS = (ACTION_RESERVE, ACTION_RELEASE, ACTION_EXPIRE)


class ReservationLog(Base):
    """One reserve, release or expiry applied to an appliance."""

    __tablename__ = "reservation_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    appliance_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("appliance.id"), nullable=False, index=True
    )
    # Copied so the trail stays readable if an appliance is renamed.
    appliance_name: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
