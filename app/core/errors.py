"""Domain exceptions shared by services and the HTTP layer."""

from typing import Any


class WaterAppError(Exception):
    """Base class for errors the API knows how to render."""

    status_code: int = 500
    code: str = "internal_error"
    public_message: str | None = None

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_response(self) -> dict[str, Any]:
        """Body returned to the client."""
        return {
            "success": False,
            "error": self.code,
            "message": self.public_message or self.message,
        }


class ValidationError(WaterAppError):
    """Missing or malformed input."""

    status_code = 422
    code = "validation_error"


class NotFoundError(WaterAppError):
    """Referenced user or reading does not exist."""

    status_code = 404
    code = "not_found"


class PersistenceError(WaterAppError):
    """Store unavailable or a write failed."""

    status_code = 500
    code = "persistence_error"
    public_message = "Server error"


class PartialBillingError(PersistenceError):
    """The reading was stored but its bill could not be written."""

    code = "bill_not_created"
    public_message = "Reading was saved but the bill could not be generated"

    def __init__(self, message: str, reading: Any, **context: Any) -> None:
        super().__init__(message, **context)
        self.reading = reading

    def to_response(self) -> dict[str, Any]:
        body = super().to_response()
        body["reading_id"] = self.reading.reading_id
        return body


class DeliveryError(WaterAppError):
    """Push gateway unreachable or rejected the message. Never leaves the notifier."""

    status_code = 502
    code = "delivery_error"
