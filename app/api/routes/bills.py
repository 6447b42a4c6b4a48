"""Water bill routes."""

from fastapi import APIRouter, Depends, Path

from app.api.deps import get_store
from app.core.database import MAX_ID
from app.core.errors import NotFoundError
from app.schemas.bill import BillDetail
from app.services.reading_store import ReadingStore

router = APIRouter(tags=["bills"])


@router.get("/water-bills/{user_id}", response_model=list[BillDetail])
async def list_water_bills(
    user_id: int = Path(..., ge=1, le=MAX_ID),
    store: ReadingStore = Depends(get_store),
) -> list[BillDetail]:
    """Bills for a user with their reading detail, newest period first."""
    if await store.get_user(user_id) is None:
        raise NotFoundError("User not found", user_id=user_id)
    return await store.list_bills_with_readings(user_id)
