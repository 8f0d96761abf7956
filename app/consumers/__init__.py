"""Event consumers subscribed to person changes."""

from app.consumers.audit import AuditRecord, AuditSink
from app.consumers.base import Consumer, IdempotencyCache
from app.consumers.notifier import Notifier

__all__ = ["AuditRecord", "AuditSink", "Consumer", "IdempotencyCache", "Notifier"]
