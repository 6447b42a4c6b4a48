"""Meter reading and billing schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer

from app.core.database import MAX_ID


class ReadingCreate(BaseModel):
    """Schema for submitting a raw register value."""

    user_id: int = Field(..., ge=1, le=MAX_ID)
    device_id: int = Field(..., ge=1, le=MAX_ID)
    reading_5digit: int = Field(..., ge=0, description="Register value as shown on the meter")


class AddReadingResponse(BaseModel):
    """Bill generated for a submitted reading."""

    bill_number: str
    reading_id: int
    previous_reading: int
    current_reading: int
    consumption: int
    amount_to_pay: Decimal
    period_start: datetime
    period_end: datetime
    due_date: datetime

    @field_serializer("amount_to_pay")
    def serialize_amount(self, value: Decimal) -> str:
        """Render money with two decimals."""
        return f"{value:.2f}"


class ConsumptionSample(BaseModel):
    """One point of the consumption history chart."""

    timestamp: datetime
    consumption: int

    model_config = {"from_attributes": True}
