"""Push notifier: best-effort delivery to the push gateway.

Delivery is at-most-once: one POST with a bounded timeout, no retry.
Nothing raised here reaches the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.errors import DeliveryError
from app.services.reading_store import ReadingStore

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "https://exp.host/--/api/v2/push/send"
DEFAULT_TOKEN_PREFIX = "ExponentPushToken"
REQUEST_TIMEOUT = 10.0


def is_valid_push_token(token: Any, prefix: str = DEFAULT_TOKEN_PREFIX) -> bool:
    """Check the push token has the expected shape."""
    return isinstance(token, str) and token.startswith(prefix)


@dataclass(frozen=True)
class SideWriteResult:
    """Outcome of a write whose failure must not abort the caller."""

    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class NotificationOutcome:
    """What happened to one notification."""

    accepted: bool  # token passed validation
    delivered: bool = False
    record: SideWriteResult | None = None
    response: Any = None


class PushNotifier:
    """Sends push alerts and records them."""

    def __init__(
        self,
        store: ReadingStore,
        client: httpx.AsyncClient,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        timeout: float = REQUEST_TIMEOUT,
        token_prefix: str = DEFAULT_TOKEN_PREFIX,
        record_on_failure: bool = False,
    ) -> None:
        self.store = store
        self.client = client
        self.gateway_url = gateway_url
        self.timeout = timeout
        self.token_prefix = token_prefix
        self.record_on_failure = record_on_failure

    async def notify(
        self,
        token: str | None,
        user_id: int,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> NotificationOutcome:
        """Deliver one alert. Never raises."""
        payload = payload or {}
        if not is_valid_push_token(token, self.token_prefix):
            logger.warning("Invalid push token for user %s: %r", user_id, token)
            return NotificationOutcome(accepted=False)

        delivered = False
        response = None
        try:
            response = await self._send(token, title, body, payload)
            delivered = True
            logger.info("Push sent for user %s response: %s", user_id, response)
        except DeliveryError as e:
            logger.error("Error sending push for user %s: %s", user_id, e)

        record = None
        if delivered or self.record_on_failure:
            record = await self._record(user_id, title, body, payload, delivered)

        return NotificationOutcome(
            accepted=True,
            delivered=delivered,
            record=record,
            response=response,
        )

    async def _send(self, token: str, title: str, body: str, payload: dict[str, Any]) -> Any:
        """POST a single message to the gateway."""
        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": payload,
        }
        try:
            response = await self.client.post(
                self.gateway_url,
                json=message,
                headers={"Accept": "application/json", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"Gateway rejected message: HTTP {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Gateway unreachable: {e!r}") from e

        try:
            return response.json()
        except ValueError:
            return response.text

    async def _record(
        self,
        user_id: int,
        title: str,
        body: str,
        payload: dict[str, Any],
        delivered: bool,
    ) -> SideWriteResult:
        """Store a notification record; failure is logged and returned, not raised."""
        try:
            await self.store.insert_notification_record(
                user_id=user_id,
                title=title,
                body=body,
                category=str(payload.get("type", "general")),
                data=payload,
                delivered=delivered,
            )
        except Exception as e:
            logger.warning("Could not store notification record for user %s: %s", user_id, e)
            return SideWriteResult(ok=False, error=str(e))
        return SideWriteResult(ok=True)
