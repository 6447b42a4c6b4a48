"""Bill listing schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, field_serializer


class BillDetail(BaseModel):
    """Bill joined with the reading that generated it."""

    bill_number: str
    period_start: datetime
    period_end: datetime
    due_date: datetime
    amount_to_pay: Decimal
    previous_reading: int | None
    current_reading: int | None
    consumption: int | None

    @field_serializer("amount_to_pay")
    def serialize_amount(self, value: Decimal) -> str:
        """Render money with two decimals."""
        return f"{value:.2f}"
