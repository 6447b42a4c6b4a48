"""Bill database model."""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.meter_reading import MeterReading


class Bill(Base):
    """Monetary charge generated from exactly one reading. Never mutated."""

    __tablename__ = "water_bills"

    bill_id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.user_id"), index=True)
    reading_id: Mapped[int] = mapped_column(
        ForeignKey("water_consumption.reading_id"),
        unique=True,
    )
    bill_number: Mapped[str] = mapped_column(String(64), unique=True)

    period_start: Mapped[datetime]
    period_end: Mapped[datetime] = mapped_column(index=True)
    due_date: Mapped[datetime]

    # Using Decimal for money
    amount_to_pay: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))

    # Relationships
    reading: Mapped["MeterReading"] = relationship(back_populates="bill")
