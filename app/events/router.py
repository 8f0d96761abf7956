"""
Event router: publish/subscribe bus with per-consumer, failure-isolated delivery.

Subscriptions are static configuration: they are registered before the router
starts and matched by exact equality on (source, detail type) through a
subscription table. Each subscription owns an ordered delivery queue and a
worker task, so:
- a consumer sees events in the order they were published
- a slow or failing consumer never delays or retries a sibling's delivery

Delivery is at-least-once. Each delivery is retried with exponential backoff,
every attempt bounded by a timeout; after the last attempt the event goes to
the dead-letter queue.
"""

import asyncio
import inspect
import json
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.events.dead_letter import DeadLetterQueue
from app.events.models import (
    DeliveryRecord,
    DeliveryStatus,
    DomainEvent,
    EventPattern,
    EventType,
    PutEventsEntry,
    PutEventsResult,
)
from core.exceptions import (
    ConsumerFailure,
    DeadLetterNotFoundError,
    RouterUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

Consumer = Callable[[DomainEvent], Union[Awaitable[Any], Any]]


class Subscription:
    """A named consumer bound to one event pattern."""

    def __init__(self, name: str, pattern: EventPattern, consumer: Consumer):
        self.name = name
        self.pattern = pattern
        self.consumer = consumer
        self.queue: Optional[asyncio.Queue] = None
        self.worker: Optional[asyncio.Task] = None

        self.delivered = 0
        self.dead_lettered = 0

    @property
    def pending(self) -> int:
        return self.queue.qsize() if self.queue is not None else 0

    def __repr__(self) -> str:
        return f"Subscription(name={self.name!r}, pattern={self.pattern})"


class EventRouter:
    """
    In-process event bus with exact-match routing and isolated fan-out.

    Thread-Safety: Uses asyncio; call from the event loop it was started on.
    """

    def __init__(
        self,
        dead_letter_queue: Optional[DeadLetterQueue] = None,
        queue_size: int = 10000,
        enqueue_timeout: float = 1.0,
        max_attempts: int = 3,
        backoff_min: float = 0.5,
        backoff_max: float = 30.0,
        consumer_timeout: float = 10.0,
        delivery_history: int = 1000,
    ):
        """
        Initialize the router.

        Args:
            dead_letter_queue: Where exhausted deliveries go.
            queue_size: Capacity of each subscription's delivery queue.
            enqueue_timeout: Max wait for queue space before RouterUnavailable.
            max_attempts: Delivery attempts per event per subscription.
            backoff_min: First retry delay (seconds), doubled per retry.
            backoff_max: Upper bound on a retry delay (seconds).
            consumer_timeout: Upper bound on one consumer invocation (seconds).
            delivery_history: Number of delivery records kept.
        """
        self._dead_letters = dead_letter_queue or DeadLetterQueue()
        self._queue_size = queue_size
        self._enqueue_timeout = enqueue_timeout
        self._max_attempts = max_attempts
        self._backoff_min = backoff_min
        self._backoff_max = backoff_max
        self._consumer_timeout = consumer_timeout

        self._table: Dict[EventPattern, List[Subscription]] = {}
        self._by_name: Dict[str, Subscription] = {}
        self._deliveries: Deque[DeliveryRecord] = deque(maxlen=delivery_history)
        self._running = False

        self._total_published = 0
        self._total_unmatched = 0

        logger.info("EventRouter initialized")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def dead_letters(self) -> DeadLetterQueue:
        return self._dead_letters

    # ------------------------------------------------------------------
    # Subscription table
    # ------------------------------------------------------------------

    def subscribe(self, name: str, pattern: EventPattern, consumer: Consumer) -> Subscription:
        """
        Register a consumer for an event pattern.

        Args:
            name: Unique subscription name (used for dead letters and stats).
            pattern: Exact (source, detail type) to match.
            consumer: Async (or sync) callable taking a DomainEvent. Raising
                signals a retryable failure.

        Raises:
            RuntimeError: If the router is already running.
            ValueError: If the name is already taken.
        """
        if self._running:
            raise RuntimeError("Subscriptions must be registered before the router starts")
        if name in self._by_name:
            raise ValueError(f"Subscription {name!r} already registered")

        subscription = Subscription(name, pattern, consumer)
        self._table.setdefault(pattern, []).append(subscription)
        self._by_name[name] = subscription
        logger.info(f"Subscribed {name} to {pattern}")
        return subscription

    def matching(self, event: DomainEvent) -> List[Subscription]:
        """Subscriptions whose pattern equals the event's (source, type)."""
        return list(self._table.get(EventPattern(event.source, event.type), []))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create delivery queues and start one worker per subscription."""
        if self._running:
            logger.warning("EventRouter already running")
            return

        for subscription in self._by_name.values():
            subscription.queue = asyncio.Queue(maxsize=self._queue_size)
            subscription.worker = asyncio.create_task(
                self._worker(subscription), name=f"router-{subscription.name}"
            )

        self._running = True
        logger.info(f"EventRouter started with {len(self._by_name)} subscriptions")

    async def join(self) -> None:
        """Wait until every queued delivery has completed."""
        for subscription in self._by_name.values():
            if subscription.queue is not None:
                await subscription.queue.join()

    async def stop(self, drain: bool = True) -> None:
        """
        Stop accepting events and shut the workers down.

        Args:
            drain: Deliver everything already queued before stopping.
        """
        if not self._running:
            return

        logger.info("Stopping EventRouter...")
        self._running = False

        if drain:
            await self.join()

        workers = [s.worker for s in self._by_name.values() if s.worker is not None]
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        for subscription in self._by_name.values():
            subscription.worker = None

        logger.info("EventRouter stopped")

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    @staticmethod
    def to_domain_event(entry: PutEventsEntry) -> DomainEvent:
        """
        Validate a publish entry and build the event consumers receive.

        Raises:
            ValidationError: Unknown detail type or detail that is not a JSON object.
        """
        try:
            detail_type = EventType(entry.detail_type)
        except ValueError:
            raise ValidationError(
                f"Unknown detail type {entry.detail_type!r}",
                details={"event_id": entry.event_id},
            ) from None

        try:
            detail = json.loads(entry.detail)
        except json.JSONDecodeError as e:
            raise ValidationError(
                "Event detail is not valid JSON", details={"event_id": entry.event_id}
            ) from e
        if not isinstance(detail, dict):
            raise ValidationError(
                "Event detail must be a JSON object", details={"event_id": entry.event_id}
            )

        try:
            return DomainEvent(
                event_id=entry.event_id,
                source=entry.source,
                type=detail_type,
                event_bus_name=entry.event_bus_name,
                detail=detail,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid event", details={"event_id": entry.event_id}
            ) from e

    async def put_events(self, entries: Sequence[PutEventsEntry]) -> PutEventsResult:
        """
        Accept events and queue them for every matching subscription.

        Events are validated before anything is queued. An event that matches
        no subscription is accepted and discarded.

        Raises:
            ValidationError: If an entry is malformed.
            RouterUnavailable: If the router is stopped or a queue stays full.
        """
        if not self._running:
            raise RouterUnavailable("Event router is not running")

        events = [self.to_domain_event(entry) for entry in entries]
        result = PutEventsResult()

        for event in events:
            targets = self.matching(event)
            for subscription in targets:
                await self._enqueue(subscription, event)

            self._total_published += 1
            if not targets:
                self._total_unmatched += 1
                logger.debug(f"No subscription matches event {event.event_id}")

            result.event_ids.append(event.event_id)
            result.routed[event.event_id] = len(targets)

        return result

    async def _enqueue(self, subscription: Subscription, event: DomainEvent) -> None:
        try:
            await asyncio.wait_for(
                subscription.queue.put(event), timeout=self._enqueue_timeout
            )
        except asyncio.TimeoutError:
            raise RouterUnavailable(
                f"Delivery queue for {subscription.name} is full",
                details={"event_id": event.event_id, "pending": subscription.pending},
            ) from None

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _worker(self, subscription: Subscription) -> None:
        """Deliver queued events for one subscription, in order."""
        logger.info(f"Delivery worker for {subscription.name} started")
        while True:
            event = await subscription.queue.get()
            try:
                await self.deliver(subscription, event)
            except Exception as e:
                logger.error(
                    f"Delivery worker for {subscription.name} error: {e}", exc_info=True
                )
            finally:
                subscription.queue.task_done()

    async def _invoke(self, subscription: Subscription, event: DomainEvent) -> None:
        consumer = subscription.consumer
        if inspect.iscoroutinefunction(consumer) or inspect.iscoroutinefunction(
            getattr(consumer, "__call__", None)
        ):
            call = consumer(event)
        else:
            # Sync consumers run in a thread so they cannot block the loop
            call = asyncio.to_thread(consumer, event)

        try:
            await asyncio.wait_for(call, timeout=self._consumer_timeout)
        except asyncio.TimeoutError:
            raise ConsumerFailure(
                f"{subscription.name} timed out after {self._consumer_timeout}s",
                details={"event_id": event.event_id},
            ) from None
        except ConsumerFailure:
            raise
        except Exception as e:
            raise ConsumerFailure(
                f"{subscription.name} failed: {e}",
                details={"event_id": event.event_id},
            ) from e

    async def deliver(self, subscription: Subscription, event: DomainEvent) -> DeliveryRecord:
        """
        Deliver one event to one subscription with retry.

        Never raises for consumer failures: an exhausted delivery is
        dead-lettered and reported in the returned record.
        """
        started = time.monotonic()
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(
                multiplier=self._backoff_min, min=self._backoff_min, max=self._backoff_max
            ),
            retry=retry_if_exception_type(ConsumerFailure),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await self._invoke(subscription, event)
        except ConsumerFailure as e:
            subscription.dead_lettered += 1
            self._dead_letters.put(subscription.name, event, str(e), attempts)
            record = DeliveryRecord(
                subscription=subscription.name,
                event_id=event.event_id,
                status=DeliveryStatus.DEAD_LETTERED,
                attempts=attempts,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(e)[:500],
            )
        else:
            subscription.delivered += 1
            record = DeliveryRecord(
                subscription=subscription.name,
                event_id=event.event_id,
                status=DeliveryStatus.SUCCESS,
                attempts=attempts,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            logger.debug(
                f"Delivered event {event.event_id} to {subscription.name} "
                f"(attempt {attempts}, {record.duration_ms}ms)",
                extra={"event_id": event.event_id, "subscription": subscription.name},
            )

        self._deliveries.append(record)
        return record

    async def dispatch(self, event: DomainEvent) -> List[DeliveryRecord]:
        """
        Deliver one event to all matching subscriptions concurrently,
        bypassing the queues.
        """
        return list(
            await asyncio.gather(*(self.deliver(s, event) for s in self.matching(event)))
        )

    async def redrive(self, letter_id: str) -> DomainEvent:
        """
        Re-queue a dead-lettered event to its subscription.

        Raises:
            DeadLetterNotFoundError: Unknown id.
            RouterUnavailable: Router not running or queue full.
        """
        letter = self._dead_letters.get(letter_id)
        if letter is None:
            raise DeadLetterNotFoundError(f"Dead letter {letter_id} not found")
        if not self._running:
            raise RouterUnavailable("Event router is not running")
        subscription = self._by_name.get(letter.subscription)
        if subscription is None:
            raise DeadLetterNotFoundError(
                f"Subscription {letter.subscription} for dead letter {letter_id} no longer exists"
            )

        await self._enqueue(subscription, letter.event)
        self._dead_letters.remove(letter_id)
        logger.info(f"Redrove event {letter.event.event_id} to {subscription.name}")
        return letter.event

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_deliveries(
        self, subscription: Optional[str] = None, limit: int = 100
    ) -> List[DeliveryRecord]:
        """Most recent delivery records first."""
        records = [
            r for r in reversed(self._deliveries)
            if subscription is None or r.subscription == subscription
        ]
        return records[:limit]

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "total_published": self._total_published,
            "total_unmatched": self._total_unmatched,
            "total_delivered": sum(s.delivered for s in self._by_name.values()),
            "total_dead_lettered": sum(s.dead_lettered for s in self._by_name.values()),
            "dead_letters_pending": len(self._dead_letters),
            "subscriptions": {
                s.name: {
                    "pattern": str(s.pattern),
                    "pending": s.pending,
                    "delivered": s.delivered,
                    "dead_lettered": s.dead_lettered,
                }
                for s in self._by_name.values()
            },
        }
