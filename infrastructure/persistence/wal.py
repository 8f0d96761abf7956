"""
Write-Ahead Log (WAL) for the person table.

Every mutation is appended here before it is applied to the in-memory table.
Each entry gets a log sequence number (LSN); the LSN doubles as the change
stream's sequence token for that mutation, so tokens keep increasing across
restarts.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Types of table mutations that can be logged."""

    PUT_ITEM = "put_item"
    UPDATE_ITEM = "update_item"


class WALEntry:
    """
    A single entry in the Write-Ahead Log.

    Each entry is one mutation applied to the table. `item` is the full
    camelCase record after the mutation.
    """

    def __init__(
        self,
        lsn: int,
        operation_type: OperationType,
        item: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ):
        self.lsn = lsn
        self.operation_type = operation_type
        self.item = item
        self.timestamp = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lsn": self.lsn,
            "operation_type": self.operation_type.value,
            "item": self.item,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WALEntry":
        if not isinstance(d, dict):
            raise ValueError(f"WAL entry must be an object, got {type(d).__name__}")
        if not isinstance(d.get("item"), dict):
            raise ValueError("WAL entry item must be an object")
        return cls(
            lsn=int(d["lsn"]),
            operation_type=OperationType(d["operation_type"]),
            item=d["item"],
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> "WALEntry":
        return cls.from_dict(json.loads(json_str))

    def __repr__(self) -> str:
        return f"WALEntry(lsn={self.lsn}, op={self.operation_type.value})"


class WriteAheadLog:
    """
    Append-only, file-rotating log of table mutations.

    Guarantees:
    1. An append that returns has been written (and fsynced if configured)
    2. LSNs are strictly increasing, including across restarts
    3. read_all() returns entries in LSN order

    Thread-Safety: All methods are thread-safe using a lock.
    """

    def __init__(
        self,
        wal_dir: Path,
        max_file_size: int = 64 * 1024 * 1024,
        sync_on_write: bool = True,
    ):
        """
        Initialize the Write-Ahead Log.

        Args:
            wal_dir: Directory to store WAL files.
            max_file_size: Maximum size of a single WAL file before rotation.
            sync_on_write: Whether to call fsync after each write.
        """
        self._wal_dir = Path(wal_dir)
        self._wal_dir.mkdir(parents=True, exist_ok=True)
        self._max_file_size = max_file_size
        self._sync_on_write = sync_on_write
        self._lock = threading.Lock()

        self._current_file: Optional[Path] = None
        self._current_file_handle = None
        self._current_file_size = 0
        self._file_number = 0
        self._last_lsn = 0

        self._initialize()

    @property
    def last_lsn(self) -> int:
        """Highest LSN written so far (0 for an empty log)."""
        return self._last_lsn

    def _wal_files(self) -> List[Path]:
        return sorted(self._wal_dir.glob("wal_*.log"))

    def _initialize(self) -> None:
        """Open the latest WAL file (or create one) and recover the last LSN."""
        entries = self._read_entries()
        if entries:
            self._last_lsn = entries[-1].lsn

        wal_files = self._wal_files()
        if wal_files:
            latest_file = wal_files[-1]
            self._current_file = latest_file
            self._file_number = int(latest_file.stem.split("_")[1])
            self._current_file_handle = open(latest_file, "a", encoding="utf-8")
            self._current_file_size = latest_file.stat().st_size
            logger.info(
                f"Opened existing WAL file: {latest_file} "
                f"(size: {self._current_file_size} bytes, last lsn: {self._last_lsn})"
            )
        else:
            self._rotate_file()

    def _rotate_file(self) -> None:
        if self._current_file_handle is not None:
            self._current_file_handle.close()

        self._file_number += 1
        self._current_file = self._wal_dir / f"wal_{self._file_number:08d}.log"
        self._current_file_handle = open(self._current_file, "w", encoding="utf-8")
        self._current_file_size = 0

        logger.info(f"Rotated to new WAL file: {self._current_file}")

    def _write_line(self, line: str) -> None:
        self._current_file_handle.write(line)
        if self._sync_on_write:
            self._current_file_handle.flush()
            os.fsync(self._current_file_handle.fileno())
        self._current_file_size += len(line.encode("utf-8"))

    def append_operation(
        self, operation_type: OperationType, item: Dict[str, Any]
    ) -> WALEntry:
        """
        Assign the next LSN and durably append a mutation.

        Args:
            operation_type: The type of mutation.
            item: The full record after the mutation.

        Returns:
            The written entry.

        Raises:
            IOError: If the write fails. The LSN is not consumed.
        """
        with self._lock:
            if self._current_file_handle is None:
                raise IOError("WAL is closed")

            if self._current_file_size >= self._max_file_size:
                self._rotate_file()

            entry = WALEntry(self._last_lsn + 1, operation_type, item)
            try:
                self._write_line(entry.to_json() + "\n")
            except (IOError, OSError) as e:
                logger.error(f"Failed to write to WAL: {e}")
                raise

            self._last_lsn = entry.lsn
            return entry

    def _read_entries(self) -> List[WALEntry]:
        entries = []
        for wal_file in self._wal_files():
            with open(wal_file, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(WALEntry.from_json(line))
                    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                        # A torn final write after a crash
                        logger.error(
                            f"Corrupted WAL entry in {wal_file} line {line_number}: {e}"
                        )
        entries.sort(key=lambda entry: entry.lsn)
        return entries

    def read_all(self) -> List[WALEntry]:
        """
        Read all entries from all WAL files in LSN order.

        Corrupted lines are logged and skipped.
        """
        with self._lock:
            if self._current_file_handle is not None:
                self._current_file_handle.flush()
            entries = self._read_entries()
            logger.info(f"Read {len(entries)} entries from WAL")
            return entries

    def rewrite(self, items: Iterable[Dict[str, Any]]) -> int:
        """
        Replace the whole log with one PUT_ITEM per given item.

        Used for compaction. New entries continue the LSN sequence so that
        tokens handed out before compaction stay lower than any later one.

        Returns:
            Number of entries written.
        """
        with self._lock:
            if self._current_file_handle is not None:
                self._current_file_handle.close()
                self._current_file_handle = None

            old_files = self._wal_files()
            self._file_number = (
                int(old_files[-1].stem.split("_")[1]) if old_files else self._file_number
            )
            self._rotate_file()

            written = 0
            for item in items:
                entry = WALEntry(self._last_lsn + 1, OperationType.PUT_ITEM, item)
                self._write_line(entry.to_json() + "\n")
                self._last_lsn = entry.lsn
                written += 1

            self._current_file_handle.flush()
            os.fsync(self._current_file_handle.fileno())

            for old_file in old_files:
                old_file.unlink()

            logger.info(f"Compacted WAL to {written} entries in {self._current_file}")
            return written

    def close(self) -> None:
        with self._lock:
            if self._current_file_handle is not None:
                self._current_file_handle.close()
                self._current_file_handle = None
                logger.info("Closed WAL")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"WriteAheadLog(dir={self._wal_dir}, "
            f"current_file={self._current_file}, "
            f"last_lsn={self._last_lsn})"
        )
