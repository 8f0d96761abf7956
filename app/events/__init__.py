"""
Change notification pipeline.

This module provides:
- Event types and wire models
- Event router (pub/sub with per-consumer delivery and dead letters)
- Event relay (change entries -> router events)
- Stream poller (change stream -> relay batches)
"""

from app.events.dead_letter import DeadLetterQueue
from app.events.models import (
    RECORD_CHANGED_PATTERN,
    RECORD_STORE_SOURCE,
    DomainEvent,
    EventPattern,
    EventType,
    PutEventsEntry,
)
from app.events.poller import StreamPoller
from app.events.relay import BatchResult, EventRelay, build_event_id
from app.events.router import EventRouter

__all__ = [
    "BatchResult",
    "DeadLetterQueue",
    "DomainEvent",
    "EventPattern",
    "EventRelay",
    "EventRouter",
    "EventType",
    "PutEventsEntry",
    "RECORD_CHANGED_PATTERN",
    "RECORD_STORE_SOURCE",
    "StreamPoller",
    "build_event_id",
]
