"""
Event types and wire models for the event router.

The set of event types is closed: one variant, RECORD_CHANGED, whose wire
value is "DynamoDBStreamEvent". Subscriptions match
on the exact (source, detail type) pair.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from app.models.changes import ChangeEntry

# Source tag of events published by the change relay
RECORD_STORE_SOURCE = "ddb.source"


class EventType(str, Enum):
    """Detail types that can be published on the router."""

    RECORD_CHANGED = "DynamoDBStreamEvent"


@dataclass(frozen=True)
class EventPattern:
    """Exact-match subscription pattern."""

    source: str
    detail_type: EventType

    def __str__(self) -> str:
        return f"{self.source}/{self.detail_type.value}"


RECORD_CHANGED_PATTERN = EventPattern(RECORD_STORE_SOURCE, EventType.RECORD_CHANGED)


class PutEventsEntry(BaseModel):
    """
    One entry of a publish call (relay -> router).

    Detail is a JSON-encoded string.
    """

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias="Source", min_length=1)
    detail_type: str = Field(..., alias="DetailType", min_length=1)
    detail: str = Field(..., alias="Detail", min_length=2)
    event_bus_name: str = Field(..., alias="EventBusName", min_length=1)
    event_id: str = Field(..., alias="EventId", min_length=1)


class PutEventsResult(BaseModel):
    """Outcome of an accepted publish call."""

    event_ids: List[str] = Field(default_factory=list)
    # Matching subscriptions per event id
    routed: Dict[str, int] = Field(default_factory=dict)


class DomainEvent(BaseModel):
    """
    Normalized event delivered to consumers.

    event_id is derived from the change entry's identity, so redelivery of
    the same entry produces the same event_id.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_id: str = Field(..., alias="id")
    source: str
    type: EventType = Field(..., alias="detail-type")
    event_bus_name: str = Field(..., alias="eventBusName")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: Dict[str, Any]

    def change(self) -> ChangeEntry:
        """Parse the detail back into the change entry it was built from."""
        return ChangeEntry.model_validate(self.detail)


class DeliveryStatus(str, Enum):
    """Outcome of delivering one event to one subscription."""

    SUCCESS = "success"
    DEAD_LETTERED = "dead_lettered"


class DeliveryRecord(BaseModel):
    """Delivery attempt summary for auditing and debugging."""

    subscription: str
    event_id: str
    status: DeliveryStatus
    attempts: int = Field(..., ge=1)
    duration_ms: int = Field(..., ge=0)
    error: Optional[str] = Field(None, max_length=500)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeadLetter(BaseModel):
    """An event a subscription could not process after exhausting retries."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    subscription: str
    event: DomainEvent
    error: str = Field(..., max_length=500)
    attempts: int = Field(..., ge=1)
    failed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
