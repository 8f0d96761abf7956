"""
Event relay: turns change entries into events on the router.

The relay is stateless. A batch is published one entry at a time in batch
order, and any failure aborts the rest of the batch with RouterUnavailable.
It keeps no partial-batch bookkeeping and never retries on its own: the
caller (stream poller or ingress endpoint) owns batch retry, and a retried
batch republishes every entry with the same event ids.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Mapping, Sequence, Union

from app.events.models import (
    RECORD_STORE_SOURCE,
    EventType,
    PutEventsEntry,
    PutEventsResult,
)
from app.models.changes import ChangeEntry
from core.exceptions import RouterUnavailable, ValidationError

logger = logging.getLogger(__name__)

# Namespace for deterministic event ids
EVENT_ID_NAMESPACE = uuid.UUID("8f4c2a9e-3b1d-5e6f-9a0b-c7d8e9f0a1b2")

Publisher = Callable[[Sequence[PutEventsEntry]], Awaitable[PutEventsResult]]
StreamRecord = Union[ChangeEntry, Mapping[str, Any]]


def build_event_id(person_id: str, sequence_number: str) -> str:
    """
    Event id for a change entry.

    Derived from (person_id, sequence_number) only, so the same change
    always maps to the same event id across batch retries.
    """
    return str(uuid.uuid5(EVENT_ID_NAMESPACE, f"{person_id}:{sequence_number}"))


@dataclass
class BatchResult:
    """Outcome of a fully published batch."""

    published: int = 0
    event_ids: List[str] = field(default_factory=list)


class EventRelay:
    """
    Publishes change entries to the event router.

    Args:
        publisher: The router's put_events call.
        event_bus_name: Bus name stamped on every entry.
        publish_timeout: Upper bound on one publish call (seconds).
    """

    def __init__(
        self,
        publisher: Publisher,
        event_bus_name: str,
        publish_timeout: float = 5.0,
    ):
        self._publisher = publisher
        self._event_bus_name = event_bus_name
        self._publish_timeout = publish_timeout

        self._batches_published = 0
        self._batches_failed = 0
        self._events_published = 0

    @property
    def event_bus_name(self) -> str:
        return self._event_bus_name

    def build_entry(self, change: ChangeEntry) -> PutEventsEntry:
        """Map a change entry to its publish entry."""
        return PutEventsEntry(
            source=RECORD_STORE_SOURCE,
            detail_type=EventType.RECORD_CHANGED.value,
            detail=json.dumps(change.to_detail()),
            event_bus_name=self._event_bus_name,
            event_id=build_event_id(change.person_id, change.sequence_number),
        )

    @staticmethod
    def parse(record: StreamRecord) -> ChangeEntry:
        if isinstance(record, ChangeEntry):
            return record
        return ChangeEntry.from_stream_record(record)

    async def handle_batch(self, records: Sequence[StreamRecord]) -> BatchResult:
        """
        Publish a batch of change entries, in order.

        Args:
            records: ChangeEntry objects or raw stream records.

        Returns:
            BatchResult with the published event ids.

        Raises:
            ValidationError: If a record is malformed. Nothing is published.
            RouterUnavailable: If any publish fails. Entries before the
                failing one may already have been delivered.
        """
        changes = [self.parse(record) for record in records]
        result = BatchResult()

        for change in changes:
            entry = self.build_entry(change)
            try:
                await asyncio.wait_for(
                    self._publisher([entry]), timeout=self._publish_timeout
                )
            except asyncio.TimeoutError:
                self._batches_failed += 1
                raise RouterUnavailable(
                    f"Publish timed out after {self._publish_timeout}s",
                    details={"entry_id": change.entry_id, "event_id": entry.event_id},
                ) from None
            except RouterUnavailable:
                self._batches_failed += 1
                raise
            except ValidationError as e:
                # The router rejected an entry the relay built
                self._batches_failed += 1
                raise RouterUnavailable(
                    f"Router rejected event: {e.message}",
                    details={"entry_id": change.entry_id, "event_id": entry.event_id},
                ) from e

            result.published += 1
            result.event_ids.append(entry.event_id)
            logger.info(
                f"Published change {change.entry_id} as event {entry.event_id}",
                extra={"entry_id": change.entry_id, "event_id": entry.event_id},
            )

        self._batches_published += 1
        self._events_published += result.published
        return result

    def get_statistics(self) -> dict:
        return {
            "event_bus_name": self._event_bus_name,
            "batches_published": self._batches_published,
            "batches_failed": self._batches_failed,
            "events_published": self._events_published,
        }
