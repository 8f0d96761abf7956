"""
Process wiring.

build_container() constructs every component once from Settings and hands
each one its collaborators through its constructor. Nothing below this module
reads configuration or module-level state.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from app.config import Settings
from app.consumers.audit import AuditSink
from app.consumers.base import Consumer
from app.consumers.notifier import Notifier
from app.events.dead_letter import DeadLetterQueue
from app.events.models import RECORD_CHANGED_PATTERN
from app.events.poller import StreamPoller
from app.events.relay import EventRelay
from app.events.router import EventRouter
from app.services.person_service import PersonService
from infrastructure.persistence.wal import WriteAheadLog
from infrastructure.repositories.person_repository import PersonRepository
from infrastructure.streams.change_stream import ChangeStream, StreamPosition

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Every long-lived component of one service process."""

    settings: Settings
    stream: ChangeStream
    repository: PersonRepository
    service: PersonService
    router: EventRouter
    relay: EventRelay
    poller: StreamPoller
    audit: AuditSink
    notifier: Notifier
    consumers: List[Consumer] = field(default_factory=list)

    async def start(self) -> None:
        """Start delivery first so the poller never publishes into a stopped router."""
        await self.router.start()
        await self.poller.start()

    async def stop(self) -> None:
        await self.poller.stop()
        await self.router.stop(drain=True)
        for consumer in self.consumers:
            await consumer.close()
        self.repository.close()


def build_container(
    settings: Settings,
    notifier: Optional[Notifier] = None,
) -> Container:
    """
    Wire the record store, change capture, relay, router and consumers.

    Args:
        settings: Effective configuration.
        notifier: Override for the notifier consumer (tests).
    """
    stream = ChangeStream(
        shard_count=settings.STREAM_SHARD_COUNT,
        retention_seconds=settings.STREAM_RETENTION_SECONDS,
    )

    wal = None
    if settings.PERSISTENCE_ENABLED:
        wal = WriteAheadLog(
            wal_dir=Path(settings.DATA_DIR).resolve() / settings.TABLE_NAME / "wal",
            max_file_size=settings.WAL_MAX_FILE_SIZE,
            sync_on_write=settings.WAL_SYNC_ON_WRITE,
        )

    repository = PersonRepository(
        table_name=settings.TABLE_NAME,
        change_stream=stream,
        wal=wal,
        lock_timeout=settings.STORE_LOCK_TIMEOUT_SECONDS,
    )

    router = EventRouter(
        dead_letter_queue=DeadLetterQueue(),
        queue_size=settings.ROUTER_QUEUE_SIZE,
        enqueue_timeout=settings.ROUTER_ENQUEUE_TIMEOUT_SECONDS,
        max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
        backoff_min=settings.DELIVERY_BACKOFF_MIN_SECONDS,
        backoff_max=settings.DELIVERY_BACKOFF_MAX_SECONDS,
        consumer_timeout=settings.CONSUMER_TIMEOUT_SECONDS,
    )

    audit = AuditSink(
        log_path=Path(settings.AUDIT_LOG_PATH) if settings.AUDIT_LOG_PATH else None,
        idempotency_cache_size=settings.IDEMPOTENCY_CACHE_SIZE,
    )
    if notifier is None:
        notifier = Notifier(
            webhook_url=settings.NOTIFY_WEBHOOK_URL,
            webhook_secret=settings.NOTIFY_WEBHOOK_SECRET,
            timeout=settings.CONSUMER_TIMEOUT_SECONDS,
            idempotency_cache_size=settings.IDEMPOTENCY_CACHE_SIZE,
        )

    router.subscribe(audit.name, RECORD_CHANGED_PATTERN, audit)
    router.subscribe(notifier.name, RECORD_CHANGED_PATTERN, notifier)

    relay = EventRelay(
        publisher=router.put_events,
        event_bus_name=settings.EVENT_BUS_NAME,
        publish_timeout=settings.RELAY_PUBLISH_TIMEOUT_SECONDS,
    )

    poller = StreamPoller(
        stream=stream,
        relay=relay,
        batch_size=settings.RELAY_BATCH_SIZE,
        poll_interval=settings.RELAY_POLL_INTERVAL_SECONDS,
        max_batch_attempts=settings.RELAY_MAX_BATCH_ATTEMPTS,
        start_position=StreamPosition(settings.STREAM_START_POSITION),
        backoff_min=settings.DELIVERY_BACKOFF_MIN_SECONDS,
        backoff_max=settings.DELIVERY_BACKOFF_MAX_SECONDS,
    )

    logger.info(f"Wired person service for table {settings.TABLE_NAME}")

    return Container(
        settings=settings,
        stream=stream,
        repository=repository,
        service=PersonService(repository),
        router=router,
        relay=relay,
        poller=poller,
        audit=audit,
        notifier=notifier,
        consumers=[audit, notifier],
    )
