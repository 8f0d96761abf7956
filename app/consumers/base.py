"""
Base class for event consumers.

Delivery is at-least-once, so every consumer must tolerate seeing the same
event id more than once. The base class tracks processed event ids in a
bounded LRU and skips repeats. An id is recorded only after the handler
succeeds, so a failed attempt is processed again on retry.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict

from app.events.models import DomainEvent
from core.exceptions import ConsumerFailure

logger = logging.getLogger(__name__)


class IdempotencyCache:
    """Bounded LRU set of processed event ids."""

    def __init__(self, max_size: int = 10000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, event_id: str) -> bool:
        if event_id in self._seen:
            self._seen.move_to_end(event_id)
            return True
        return False

    def add(self, event_id: str) -> None:
        self._seen[event_id] = None
        self._seen.move_to_end(event_id)
        while len(self._seen) > self._max_size:
            self._seen.popitem(last=False)

    def __len__(self) -> int:
        return len(self._seen)


class Consumer(ABC):
    """
    Idempotent event consumer.

    Subclasses implement handle(); the router awaits the instance itself.
    """

    name = "consumer"

    def __init__(self, idempotency_cache_size: int = 10000):
        self._processed = IdempotencyCache(idempotency_cache_size)
        # Serializes the check-handle-record sequence for one event id
        self._lock = asyncio.Lock()

        self.handled = 0
        self.duplicates = 0
        self.failures = 0

    async def __call__(self, event: DomainEvent) -> None:
        async with self._lock:
            if event.event_id in self._processed:
                self.duplicates += 1
                logger.debug(
                    f"{self.name} skipping duplicate event {event.event_id}",
                    extra={"event_id": event.event_id, "subscription": self.name},
                )
                return

            try:
                await self.handle(event)
            except ConsumerFailure:
                self.failures += 1
                raise
            except Exception as e:
                self.failures += 1
                raise ConsumerFailure(
                    f"{self.name} failed to handle event: {e}",
                    details={"event_id": event.event_id},
                ) from e

            self._processed.add(event.event_id)
            self.handled += 1

    @abstractmethod
    async def handle(self, event: DomainEvent) -> None:
        """Process one event. Raising signals a retryable failure."""

    async def close(self) -> None:
        """Release resources held by the consumer."""

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "handled": self.handled,
            "duplicates": self.duplicates,
            "failures": self.failures,
            "tracked_event_ids": len(self._processed),
        }
