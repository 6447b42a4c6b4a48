"""Meter reading routes: submission with automatic billing, and history."""

from fastapi import APIRouter, Depends, Path

from app.api.deps import get_billing_engine, get_settings, get_store
from app.core.config import Settings
from app.core.database import MAX_ID
from app.core.errors import NotFoundError
from app.schemas.reading import AddReadingResponse, ConsumptionSample, ReadingCreate
from app.services.billing import BillingEngine
from app.services.reading_store import ReadingStore

router = APIRouter(tags=["readings"])


@router.post("/add-reading", response_model=AddReadingResponse)
async def add_reading(
    reading_data: ReadingCreate,
    engine: BillingEngine = Depends(get_billing_engine),
) -> AddReadingResponse:
    """Record a meter reading and generate its bill.

    Consumption is the difference from the previous reading of the same
    device, floored at zero.
    """
    result = await engine.record_reading_and_bill(
        user_id=reading_data.user_id,
        device_id=reading_data.device_id,
        raw_value=reading_data.reading_5digit,
    )
    reading, bill = result.reading, result.bill
    return AddReadingResponse(
        bill_number=bill.bill_number,
        reading_id=reading.reading_id,
        previous_reading=reading.previous_reading,
        current_reading=reading.current_reading,
        consumption=reading.consumption,
        amount_to_pay=bill.amount_to_pay,
        period_start=bill.period_start,
        period_end=bill.period_end,
        due_date=bill.due_date,
    )


@router.get("/consumption/{user_id}", response_model=list[ConsumptionSample])
async def get_consumption(
    user_id: int = Path(..., ge=1, le=MAX_ID),
    store: ReadingStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> list[ConsumptionSample]:
    """Consumption samples for the chart, oldest first."""
    if await store.get_user(user_id) is None:
        raise NotFoundError("User not found", user_id=user_id)
    readings = await store.get_consumption_history(user_id, settings.CONSUMPTION_HISTORY_LIMIT)
    return [ConsumptionSample.model_validate(r) for r in readings]
