"""User push destination routes."""

from fastapi import APIRouter, Depends

from app.api.deps import get_store
from app.core.errors import NotFoundError
from app.schemas.user import MessageResponse, PushTokenRegister
from app.services.reading_store import ReadingStore

router = APIRouter(tags=["users"])


@router.post("/register-push-token", response_model=MessageResponse)
async def register_push_token(
    data: PushTokenRegister,
    store: ReadingStore = Depends(get_store),
) -> MessageResponse:
    """Save the device push token used for leak alerts."""
    if not await store.set_push_token(data.user_id, data.expo_push_token):
        raise NotFoundError("User not found", user_id=data.user_id)
    return MessageResponse(message="Push token registered successfully")
