"""
Thread-safe repository for person records (the record store).

The repository is the system of record and the only shared mutable resource
in the pipeline. Each successful create/update is, under one write lock:
1. appended to the write-ahead log (durability, assigns the LSN)
2. applied to the in-memory table
3. captured as exactly one change-stream entry carrying that LSN

Concurrent updates to the same id are last-writer-wins; there is no version
check. Reads are not isolated from concurrent writes beyond a single record.
"""

import itertools
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Mapping, Optional, Union

from app.models.base import Person, PersonFields, generate_person_id
from app.models.changes import ChangeKind
from core.exceptions import RecordNotFoundError, StoreUnavailable, ValidationError
from infrastructure.persistence.wal import OperationType, WriteAheadLog
from infrastructure.streams.change_stream import ChangeStream

logger = logging.getLogger(__name__)

FieldsInput = Union[PersonFields, Mapping[str, Any]]


class PersonRepository:
    """
    Key-value table of person records keyed by person_id.

    Thread-Safety: All public methods are thread-safe. Lock acquisition is
    bounded by lock_timeout; a timeout raises StoreUnavailable.
    """

    def __init__(
        self,
        table_name: str,
        change_stream: ChangeStream,
        wal: Optional[WriteAheadLog] = None,
        lock_timeout: float = 5.0,
    ):
        """
        Initialize the repository.

        Args:
            table_name: Logical table name (used in logs and statistics).
            change_stream: Stream that receives one entry per mutation.
            wal: Write-ahead log for durability. None keeps the table in memory.
            lock_timeout: Seconds to wait for the table lock.
        """
        self._table_name = table_name
        self._stream = change_stream
        self._wal = wal
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()

        self._items: Dict[str, Person] = {}
        # Used only without a WAL
        self._counter = itertools.count(1)

        if self._wal is not None:
            self._load_from_disk()

    @property
    def table_name(self) -> str:
        return self._table_name

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise StoreUnavailable(
                f"Timed out waiting for table {self._table_name}",
                details={"timeout_seconds": self._lock_timeout},
            )
        try:
            yield
        finally:
            self._lock.release()

    def _load_from_disk(self) -> None:
        """Rebuild the table by replaying the WAL. No change entries are emitted."""
        entries = self._wal.read_all()
        for entry in entries:
            person = Person.from_item(entry.item)
            self._items[person.person_id] = person
        logger.info(
            f"Loaded {len(self._items)} records into {self._table_name} "
            f"from {len(entries)} WAL entries"
        )

    def _log_mutation(self, operation_type: OperationType, person: Person) -> int:
        """Durably record a mutation and return its LSN."""
        if self._wal is None:
            return next(self._counter)
        try:
            return self._wal.append_operation(operation_type, person.to_item()).lsn
        except (IOError, OSError) as e:
            raise StoreUnavailable(
                f"Failed to persist write to {self._table_name}",
                details={"person_id": person.person_id, "error": str(e)},
            ) from e

    def create(self, fields: FieldsInput) -> str:
        """
        Create a record with a server-generated id.

        Args:
            fields: The four person fields.

        Returns:
            The new person id.

        Raises:
            ValidationError: If any field is missing or empty.
            StoreUnavailable: If the write cannot be made durable.
        """
        person = Person.from_fields(generate_person_id(), PersonFields.from_input(fields))

        with self._locked():
            lsn = self._log_mutation(OperationType.PUT_ITEM, person)
            self._items[person.person_id] = person
            self._stream.append(ChangeKind.CREATED, person, lsn)

        logger.info(
            f"Created person {person.person_id}",
            extra={"person_id": person.person_id},
        )
        return person.person_id

    def get(self, person_id: str) -> Person:
        """
        Retrieve a record by id.

        Raises:
            RecordNotFoundError: If the record doesn't exist.
        """
        with self._locked():
            person = self._items.get(person_id)
        if person is None:
            raise RecordNotFoundError(f"Person {person_id} not found")
        return person

    def get_all(self) -> List[Person]:
        """Full scan of the table. Order is unspecified; not paginated."""
        with self._locked():
            return list(self._items.values())

    def update(self, person_id: str, fields: FieldsInput) -> Person:
        """
        Replace all fields of an existing record (no upsert).

        Returns:
            The updated record.

        Raises:
            ValidationError: If the id is empty or a field is missing/empty.
            RecordNotFoundError: If the record doesn't exist.
            StoreUnavailable: If the write cannot be made durable.
        """
        if not person_id:
            raise ValidationError("Missing personId")
        new_fields = PersonFields.from_input(fields)

        with self._locked():
            if person_id not in self._items:
                raise RecordNotFoundError(f"Person {person_id} not found")
            person = Person.from_fields(person_id, new_fields)
            lsn = self._log_mutation(OperationType.UPDATE_ITEM, person)
            self._items[person_id] = person
            self._stream.append(ChangeKind.UPDATED, person, lsn)

        logger.info(f"Updated person {person_id}", extra={"person_id": person_id})
        return person

    def count(self) -> int:
        with self._locked():
            return len(self._items)

    def compact(self) -> int:
        """
        Rewrite the WAL as one entry per live record.

        Returns:
            Number of records written (0 without persistence).
        """
        if self._wal is None:
            return 0
        with self._locked():
            try:
                return self._wal.rewrite(p.to_item() for p in self._items.values())
            except (IOError, OSError) as e:
                raise StoreUnavailable(
                    f"Failed to compact {self._table_name}", details={"error": str(e)}
                ) from e

    def close(self) -> None:
        if self._wal is not None:
            self._wal.close()

    def get_statistics(self) -> Dict[str, Any]:
        with self._locked():
            return {
                "table_name": self._table_name,
                "record_count": len(self._items),
                "persistent": self._wal is not None,
                "last_lsn": self._wal.last_lsn if self._wal is not None else None,
            }
