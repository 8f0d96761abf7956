"""
Audit sink: records every person change it receives.

Records are kept in memory and, when a path is configured, appended to a
JSON-lines file.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.consumers.base import Consumer
from app.events.models import DomainEvent
from app.models.base import Person
from app.models.changes import ChangeKind

logger = logging.getLogger(__name__)


class AuditRecord(BaseModel):
    """One audited change."""

    event_id: str
    person_id: str
    change_kind: ChangeKind
    sequence_number: str
    new_image: Person
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Consumer):
    """Consumer that keeps an audit trail of record changes."""

    name = "audit"

    def __init__(
        self,
        log_path: Optional[Path] = None,
        idempotency_cache_size: int = 10000,
        max_records: int = 10000,
    ):
        super().__init__(idempotency_cache_size)
        self._log_path = Path(log_path) if log_path else None
        self._max_records = max_records
        self._records: List[AuditRecord] = []

        if self._log_path is not None:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def records(self) -> List[AuditRecord]:
        return list(self._records)

    async def handle(self, event: DomainEvent) -> None:
        change = event.change()
        record = AuditRecord(
            event_id=event.event_id,
            person_id=change.person_id,
            change_kind=change.change_kind,
            sequence_number=change.sequence_number,
            new_image=change.new_image,
        )

        if self._log_path is not None:
            await asyncio.to_thread(self._append_line, record.model_dump_json(by_alias=True))

        self._records.append(record)
        if len(self._records) > self._max_records:
            del self._records[: len(self._records) - self._max_records]

        logger.info(
            f"Audited {change.change_kind.value} of person {change.person_id} "
            f"at {change.sequence_number}",
            extra={"event_id": event.event_id, "person_id": change.person_id},
        )

    def _append_line(self, line: str) -> None:
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def get_statistics(self) -> Dict[str, Any]:
        stats = super().get_statistics()
        stats["records"] = len(self._records)
        stats["log_path"] = str(self._log_path) if self._log_path else None
        return stats
