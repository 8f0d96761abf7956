"""
Notifier: tells someone a person record changed.

With a webhook URL configured, the event is POSTed as JSON with an HMAC
SHA-256 signature header. Without one, the notification is only logged.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from app.consumers.base import Consumer
from app.events.models import DomainEvent
from app.models.changes import ChangeKind
from core.exceptions import ConsumerFailure

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    event_id: str
    person_id: str
    subject: str
    body: str


def generate_signature(payload: bytes, secret: str) -> str:
    """
    Generate HMAC SHA-256 signature for payload.

    Args:
        payload: JSON payload as bytes
        secret: Shared webhook secret

    Returns:
        Signature in the form "sha256=<hex digest>"
    """
    signature = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"sha256={signature}"


class Notifier(Consumer):
    """Consumer that sends a notification per record change."""

    name = "notifier"

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: float = 10.0,
        idempotency_cache_size: int = 10000,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(idempotency_cache_size)
        self._webhook_url = webhook_url
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._http_client = http_client
        self.sent: List[Notification] = []

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    @staticmethod
    def render(event: DomainEvent) -> Notification:
        change = event.change()
        image = change.new_image
        verb = "created" if change.change_kind == ChangeKind.CREATED else "updated"
        return Notification(
            event_id=event.event_id,
            person_id=change.person_id,
            subject=f"Person {image.first_name} {image.last_name} {verb}",
            body=(
                f"Person {change.person_id} was {verb}.\n"
                f"Name: {image.first_name} {image.last_name}\n"
                f"Address: {image.address}\n"
                f"Phone: {image.phone_number}\n"
            ),
        )

    async def handle(self, event: DomainEvent) -> None:
        notification = self.render(event)

        if self._webhook_url:
            await self._post(event)
        else:
            logger.info(
                f"Sending email notification: {notification.subject}",
                extra={"event_id": event.event_id, "person_id": notification.person_id},
            )

        self.sent.append(notification)

    async def _post(self, event: DomainEvent) -> None:
        payload = event.model_dump_json(by_alias=True).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Event-ID": event.event_id,
            "X-Event-Type": event.type.value,
        }
        if self._webhook_secret:
            headers["X-Webhook-Signature"] = generate_signature(payload, self._webhook_secret)

        try:
            response = await self.http_client.post(
                self._webhook_url, content=payload, headers=headers
            )
        except httpx.HTTPError as e:
            raise ConsumerFailure(
                f"Notification webhook unreachable: {e}",
                details={"event_id": event.event_id},
            ) from e

        if not 200 <= response.status_code < 300:
            raise ConsumerFailure(
                f"Notification webhook returned HTTP {response.status_code}: "
                f"{response.text[:200]}",
                details={"event_id": event.event_id},
            )

        logger.info(
            f"Delivered notification for event {event.event_id} to webhook",
            extra={"event_id": event.event_id},
        )

    def get_statistics(self) -> Dict[str, Any]:
        stats = super().get_statistics()
        stats["sent"] = len(self.sent)
        stats["webhook_enabled"] = bool(self._webhook_url)
        return stats
