"""
Dead-letter queue for events a consumer could not process.

Failed deliveries land here instead of being dropped. Operators can inspect
them and redrive a dead letter to its subscription through the router.
"""

import logging
from collections import OrderedDict
from typing import List, Optional

from app.events.models import DeadLetter, DomainEvent

logger = logging.getLogger(__name__)


class DeadLetterQueue:
    """
    Bounded, in-memory dead-letter store.

    When full, the oldest dead letter is evicted and logged at ERROR level
    with its full event so it can still be recovered from the logs.
    """

    def __init__(self, max_size: int = 10000):
        self._max_size = max_size
        self._letters: "OrderedDict[str, DeadLetter]" = OrderedDict()
        self._total_received = 0

    def put(
        self,
        subscription: str,
        event: DomainEvent,
        error: str,
        attempts: int,
    ) -> DeadLetter:
        letter = DeadLetter(
            subscription=subscription,
            event=event,
            error=error[:500],
            attempts=attempts,
        )
        self._letters[letter.id] = letter
        self._total_received += 1

        if len(self._letters) > self._max_size:
            _, evicted = self._letters.popitem(last=False)
            logger.error(
                f"Dead-letter queue full, evicted {evicted.id}: "
                f"{evicted.event.model_dump_json(by_alias=True)}"
            )

        logger.error(
            f"Dead-lettered event {event.event_id} for {subscription} "
            f"after {attempts} attempts: {letter.error}",
            extra={"event_id": event.event_id, "subscription": subscription},
        )
        return letter

    def get(self, letter_id: str) -> Optional[DeadLetter]:
        return self._letters.get(letter_id)

    def remove(self, letter_id: str) -> Optional[DeadLetter]:
        return self._letters.pop(letter_id, None)

    def list(self, subscription: Optional[str] = None, limit: int = 100) -> List[DeadLetter]:
        """Most recent first, optionally filtered by subscription."""
        letters = [
            letter for letter in reversed(self._letters.values())
            if subscription is None or letter.subscription == subscription
        ]
        return letters[:limit]

    @property
    def total_received(self) -> int:
        return self._total_received

    def __len__(self) -> int:
        return len(self._letters)
