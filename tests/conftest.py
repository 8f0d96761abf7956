"""
Pytest configuration and shared fixtures.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest

from app.config import Settings
from app.models.base import Person, generate_person_id
from app.models.changes import ChangeEntry, ChangeKind, format_sequence_number
from infrastructure.persistence.wal import WriteAheadLog
from infrastructure.repositories.person_repository import PersonRepository
from infrastructure.streams.change_stream import ChangeStream


@pytest.fixture
def temp_data_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test data."""
    temp_dir = Path(tempfile.mkdtemp())
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def test_settings() -> Settings:
    """In-memory settings with no backoff so retry paths run instantly."""
    return Settings(
        _env_file=None,
        TABLE_NAME="persons-test",
        PERSISTENCE_ENABLED=False,
        STREAM_START_POSITION="TRIM_HORIZON",
        RELAY_POLL_INTERVAL_SECONDS=0.01,
        DELIVERY_BACKOFF_MIN_SECONDS=0,
        DELIVERY_BACKOFF_MAX_SECONDS=0,
        CONSUMER_TIMEOUT_SECONDS=2.0,
        ENABLE_DOCS=False,
    )


@pytest.fixture
def tony_fields() -> Dict[str, str]:
    return {
        "firstName": "Tony",
        "lastName": "Stark",
        "address": "10880 Malibu Point",
        "phoneNumber": "555-0100",
    }


@pytest.fixture
def change_stream() -> ChangeStream:
    return ChangeStream(shard_count=4, retention_seconds=86400)


@pytest.fixture
def person_repository(change_stream: ChangeStream) -> PersonRepository:
    """In-memory repository wired to a change stream."""
    return PersonRepository(table_name="persons-test", change_stream=change_stream)


@pytest.fixture
def persistent_repository(
    temp_data_dir: Path, change_stream: ChangeStream
) -> Generator[PersonRepository, None, None]:
    wal = WriteAheadLog(wal_dir=temp_data_dir / "wal", sync_on_write=False)
    repository = PersonRepository(
        table_name="persons-test", change_stream=change_stream, wal=wal
    )
    yield repository
    repository.close()


def make_change(
    sequence: int = 1,
    person_id: str = None,
    kind: ChangeKind = ChangeKind.CREATED,
    first_name: str = "Tony",
) -> ChangeEntry:
    """Build a change entry without going through the store."""
    person_id = person_id or generate_person_id()
    image = Person(
        person_id=person_id,
        first_name=first_name,
        last_name="Stark",
        address="10880 Malibu Point",
        phone_number="555-0100",
    )
    return ChangeEntry(
        entry_id=f"entry-{sequence}",
        change_kind=kind,
        person_id=person_id,
        sequence_number=format_sequence_number(sequence),
        new_image=image,
    )


@pytest.fixture
def change_factory():
    """Factory for change entries (see make_change)."""
    return make_change
