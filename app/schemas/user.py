"""User schemas."""

from pydantic import BaseModel, Field, field_validator

from app.core.database import MAX_ID


class PushTokenRegister(BaseModel):
    """Schema for registering a device push token."""

    user_id: int = Field(..., ge=1, le=MAX_ID)
    expo_push_token: str

    @field_validator("expo_push_token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        """Reject blank tokens."""
        v = v.strip()
        if not v:
            raise ValueError("Push token cannot be empty")
        return v


class MessageResponse(BaseModel):
    """Generic acknowledgement."""

    success: bool = True
    message: str
