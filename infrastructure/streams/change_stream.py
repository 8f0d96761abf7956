"""
Change stream: ordered, sharded, time-bounded log of table mutations.

Entries are partitioned into shards by a stable hash of the person id, so all
changes to one record land in one shard in sequence order. Ordering across
shards is not defined. Entries older than the retention window are trimmed;
a reader whose checkpoint falls behind the trimmed range has permanently
missed those entries and gets CheckpointExpiredError.
"""

import bisect
import logging
import threading
import zlib
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from app.models.base import Person
from app.models.changes import (
    ChangeEntry,
    ChangeKind,
    format_sequence_number,
    parse_sequence_number,
)
from core.exceptions import CheckpointExpiredError, ValidationError

logger = logging.getLogger(__name__)


class StreamPosition(str, Enum):
    """Where a reader without a checkpoint starts."""

    LATEST = "LATEST"
    TRIM_HORIZON = "TRIM_HORIZON"


class _Shard:
    """Entries of one shard, kept sorted by sequence."""

    def __init__(self, shard_id: str):
        self.shard_id = shard_id
        self.entries: List[ChangeEntry] = []
        self.sequences: List[int] = []
        # Highest sequence removed by retention, None if nothing trimmed yet
        self.trimmed_through: Optional[int] = None


class ChangeStream:
    """
    In-process change stream for the person table.

    The record store appends exactly one entry per successful mutation while
    holding its write lock; the stream poller reads shards from checkpoints.

    Thread-Safety: All public methods are thread-safe using a lock.
    """

    def __init__(
        self,
        shard_count: int = 4,
        retention_seconds: int = 86400,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the change stream.

        Args:
            shard_count: Number of shards entries are partitioned into.
            retention_seconds: How long an entry stays readable.
            clock: Time source (injectable for retention tests).
        """
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._shards: Dict[str, _Shard] = {
            self._shard_id(i): _Shard(self._shard_id(i)) for i in range(shard_count)
        }
        self._shard_ids = list(self._shards)
        self._last_sequence = 0

        self._total_appended = 0
        self._total_trimmed = 0

        logger.info(
            f"ChangeStream initialized with {shard_count} shards "
            f"(retention {retention_seconds}s)"
        )

    @staticmethod
    def _shard_id(index: int) -> str:
        return f"shardId-{index:08d}"

    def shard_for(self, person_id: str) -> str:
        """Shard that holds every entry for this person id."""
        index = zlib.crc32(person_id.encode("utf-8")) % len(self._shard_ids)
        return self._shard_ids[index]

    def list_shards(self) -> List[str]:
        return list(self._shard_ids)

    def append(
        self,
        change_kind: ChangeKind,
        image: Person,
        sequence_number: int,
    ) -> ChangeEntry:
        """
        Append one change entry.

        Args:
            change_kind: CREATED or UPDATED.
            image: The record after the mutation.
            sequence_number: The mutation's LSN; must exceed every earlier one.

        Returns:
            The appended entry.

        Raises:
            ValueError: If sequence_number does not increase.
        """
        with self._lock:
            if sequence_number <= self._last_sequence:
                raise ValueError(
                    f"Sequence number {sequence_number} is not greater than "
                    f"last appended {self._last_sequence}"
                )

            now = self._clock()
            entry = ChangeEntry(
                entry_id=uuid4().hex,
                change_kind=change_kind,
                person_id=image.person_id,
                sequence_number=format_sequence_number(sequence_number),
                new_image=image,
                approximate_creation_time=now,
            )

            shard = self._shards[self.shard_for(image.person_id)]
            shard.entries.append(entry)
            shard.sequences.append(sequence_number)
            self._last_sequence = sequence_number
            self._total_appended += 1

            self._trim_locked(now)

        logger.debug(
            f"Captured {change_kind.value} for {image.person_id} "
            f"at {entry.sequence_number} in {shard.shard_id}"
        )
        return entry

    def latest_sequence(self, shard_id: str) -> Optional[str]:
        """
        Sequence token of the newest entry in a shard.

        Falls back to the trimmed position for an emptied shard, so a reader
        checkpointed there sees only new entries. None for an untouched shard.
        """
        with self._lock:
            shard = self._get_shard(shard_id)
            if shard.sequences:
                return format_sequence_number(shard.sequences[-1])
            if shard.trimmed_through is not None:
                return format_sequence_number(shard.trimmed_through)
            return None

    def get_records(
        self,
        shard_id: str,
        after_sequence: Optional[str] = None,
        limit: int = 100,
    ) -> List[ChangeEntry]:
        """
        Read entries of a shard in sequence order.

        Args:
            shard_id: Shard to read.
            after_sequence: Checkpoint; only entries after it are returned.
                None reads from the trim horizon (oldest retained entry).
            limit: Maximum number of entries.

        Raises:
            CheckpointExpiredError: If entries after the checkpoint were trimmed.
        """
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}")

        with self._lock:
            self._trim_locked(self._clock())
            shard = self._get_shard(shard_id)

            if after_sequence is None:
                start = 0
            else:
                after = parse_sequence_number(after_sequence)
                if shard.trimmed_through is not None and after < shard.trimmed_through:
                    raise CheckpointExpiredError(
                        "Checkpoint is behind the stream's retention window",
                        details={
                            "shard_id": shard_id,
                            "checkpoint": after_sequence,
                            "trimmed_through": format_sequence_number(shard.trimmed_through),
                        },
                    )
                start = bisect.bisect_right(shard.sequences, after)

            return shard.entries[start:start + limit]

    def trim(self) -> int:
        """Drop entries older than the retention window. Returns the count."""
        with self._lock:
            return self._trim_locked(self._clock())

    def _trim_locked(self, now: datetime) -> int:
        cutoff = now - self._retention
        removed = 0
        for shard in self._shards.values():
            expired = 0
            for entry in shard.entries:
                if entry.approximate_creation_time >= cutoff:
                    break
                expired += 1
            if expired:
                shard.trimmed_through = shard.sequences[expired - 1]
                del shard.entries[:expired]
                del shard.sequences[:expired]
                removed += expired

        if removed:
            self._total_trimmed += removed
            logger.info(f"Trimmed {removed} change entries past retention")
        return removed

    def _get_shard(self, shard_id: str) -> _Shard:
        try:
            return self._shards[shard_id]
        except KeyError:
            raise ValidationError(f"Unknown shard {shard_id}") from None

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "shard_count": len(self._shards),
                "retained_entries": sum(len(s.entries) for s in self._shards.values()),
                "total_appended": self._total_appended,
                "total_trimmed": self._total_trimmed,
                "last_sequence_number": (
                    format_sequence_number(self._last_sequence) if self._last_sequence else None
                ),
            }
