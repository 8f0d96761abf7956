"""
Test suite for infrastructure/streams/change_stream.py

Coverage targets:
- Shard assignment is stable per person id
- Per-shard sequence ordering and checkpoint reads
- Retention trimming and expired checkpoints
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.models.base import Person
from app.models.changes import ChangeKind, format_sequence_number
from core.exceptions import CheckpointExpiredError, ValidationError
from infrastructure.streams.change_stream import ChangeStream


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


def person(person_id: str, address: str = "10880 Malibu Point") -> Person:
    return Person(
        person_id=person_id,
        first_name="Tony",
        last_name="Stark",
        address=address,
        phone_number="555-0100",
    )


class TestSharding:
    def test_shard_for_is_stable(self):
        stream = ChangeStream(shard_count=8)
        assert stream.shard_for("person-1") == stream.shard_for("person-1")
        assert ChangeStream(shard_count=8).shard_for("person-1") == stream.shard_for("person-1")

    def test_list_shards(self):
        assert len(ChangeStream(shard_count=3).list_shards()) == 3

    def test_invalid_shard_count(self):
        with pytest.raises(ValueError):
            ChangeStream(shard_count=0)

    def test_all_entries_for_one_person_share_a_shard(self):
        stream = ChangeStream(shard_count=4)
        for seq in range(1, 6):
            stream.append(ChangeKind.UPDATED, person("p1", f"A{seq}"), seq)

        shard_id = stream.shard_for("p1")
        entries = stream.get_records(shard_id)
        assert [e.new_image.address for e in entries] == ["A1", "A2", "A3", "A4", "A5"]
        for other in stream.list_shards():
            if other != shard_id:
                assert stream.get_records(other) == []


class TestAppendAndRead:
    def test_append_returns_entry(self):
        stream = ChangeStream()
        entry = stream.append(ChangeKind.CREATED, person("p1"), 7)

        assert entry.person_id == "p1"
        assert entry.change_kind == ChangeKind.CREATED
        assert entry.sequence_number == format_sequence_number(7)
        assert entry.entry_id

    def test_default_clock_is_utc(self):
        entry = ChangeStream().append(ChangeKind.CREATED, person("p1"), 1)

        assert entry.approximate_creation_time.utcoffset() == timedelta(0)

    def test_sequence_must_increase(self):
        stream = ChangeStream()
        stream.append(ChangeKind.CREATED, person("p1"), 5)

        with pytest.raises(ValueError):
            stream.append(ChangeKind.UPDATED, person("p1"), 5)
        with pytest.raises(ValueError):
            stream.append(ChangeKind.UPDATED, person("p2"), 3)

    def test_get_records_after_checkpoint(self):
        stream = ChangeStream(shard_count=1)
        entries = [stream.append(ChangeKind.CREATED, person(f"p{i}"), i) for i in range(1, 6)]
        shard_id = stream.list_shards()[0]

        after = stream.get_records(shard_id, after_sequence=entries[1].sequence_number)
        assert [e.sequence for e in after] == [3, 4, 5]

    def test_get_records_respects_limit(self):
        stream = ChangeStream(shard_count=1)
        for i in range(1, 11):
            stream.append(ChangeKind.CREATED, person(f"p{i}"), i)
        shard_id = stream.list_shards()[0]

        assert len(stream.get_records(shard_id, limit=4)) == 4

    def test_get_records_invalid_limit(self):
        stream = ChangeStream()
        with pytest.raises(ValidationError):
            stream.get_records(stream.list_shards()[0], limit=0)

    def test_unknown_shard(self):
        with pytest.raises(ValidationError):
            ChangeStream().get_records("shardId-99999999")

    def test_latest_sequence(self):
        stream = ChangeStream(shard_count=1)
        shard_id = stream.list_shards()[0]
        assert stream.latest_sequence(shard_id) is None

        stream.append(ChangeKind.CREATED, person("p1"), 4)
        assert stream.latest_sequence(shard_id) == format_sequence_number(4)

    def test_tokens_sort_lexically(self):
        assert format_sequence_number(9) < format_sequence_number(10)
        assert format_sequence_number(99) < format_sequence_number(100)


class TestRetention:
    def test_old_entries_are_trimmed(self):
        clock = FakeClock()
        stream = ChangeStream(shard_count=1, retention_seconds=60, clock=clock)
        stream.append(ChangeKind.CREATED, person("p1"), 1)
        clock.advance(30)
        stream.append(ChangeKind.CREATED, person("p2"), 2)
        clock.advance(45)

        shard_id = stream.list_shards()[0]
        assert [e.sequence for e in stream.get_records(shard_id)] == [2]
        assert stream.get_statistics()["total_trimmed"] == 1

    def test_expired_checkpoint_raises(self):
        clock = FakeClock()
        stream = ChangeStream(shard_count=1, retention_seconds=60, clock=clock)
        first = stream.append(ChangeKind.CREATED, person("p1"), 1)
        stream.append(ChangeKind.CREATED, person("p2"), 2)
        stream.append(ChangeKind.CREATED, person("p3"), 3)
        clock.advance(120)
        stream.append(ChangeKind.CREATED, person("p4"), 4)

        shard_id = stream.list_shards()[0]
        with pytest.raises(CheckpointExpiredError):
            stream.get_records(shard_id, after_sequence=first.sequence_number)

    def test_checkpoint_at_trim_boundary_is_valid(self):
        clock = FakeClock()
        stream = ChangeStream(shard_count=1, retention_seconds=60, clock=clock)
        last_old = stream.append(ChangeKind.CREATED, person("p1"), 1)
        clock.advance(120)
        stream.append(ChangeKind.CREATED, person("p2"), 2)

        shard_id = stream.list_shards()[0]
        records = stream.get_records(shard_id, after_sequence=last_old.sequence_number)
        assert [e.sequence for e in records] == [2]

    def test_latest_sequence_of_emptied_shard(self):
        clock = FakeClock()
        stream = ChangeStream(shard_count=1, retention_seconds=60, clock=clock)
        stream.append(ChangeKind.CREATED, person("p1"), 1)
        clock.advance(120)
        assert stream.trim() == 1

        shard_id = stream.list_shards()[0]
        assert stream.latest_sequence(shard_id) == format_sequence_number(1)
