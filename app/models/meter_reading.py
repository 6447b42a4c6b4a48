"""MeterReading database model - the append-only consumption ledger."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.bill import Bill
    from app.models.user import User


class MeterReading(Base):
    """One submitted register value and the consumption derived from it.

    Rows are immutable once written.
    """

    __tablename__ = "water_consumption"
    __table_args__ = (Index("ix_water_consumption_device_ts", "user_id", "device_id", "timestamp"),)

    reading_id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.user_id"), index=True)
    device_id: Mapped[int] = mapped_column(index=True)

    # Register values as shown on the meter face
    reading_5digit: Mapped[int]
    previous_reading: Mapped[int]
    current_reading: Mapped[int]
    consumption: Mapped[int]  # Never negative

    # Server-assigned, strictly increasing per device
    timestamp: Mapped[datetime] = mapped_column(index=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="readings")
    bill: Mapped["Bill | None"] = relationship(back_populates="reading")
