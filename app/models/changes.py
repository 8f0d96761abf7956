"""
Change entries captured from the record store.

A ChangeEntry is the unit of change data capture: one per successful
create/update, carrying the full new image of the record. The raw "stream
record" form mirrors a DynamoDB stream record so that batches handed to the
relay by an external scheduler have the shape of a DynamoDB stream feed.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.models.base import Person
from core.exceptions import ValidationError

STREAM_EVENT_SOURCE = "person:stream"

# Zero-padded so that lexical order of tokens equals numeric order
SEQUENCE_WIDTH = 21


def format_sequence_number(lsn: int) -> str:
    """Render a log sequence number as an opaque, sortable token."""
    if lsn < 0:
        raise ValueError(f"Sequence number must be non-negative, got {lsn}")
    return f"{lsn:0{SEQUENCE_WIDTH}d}"


def parse_sequence_number(token: str) -> int:
    try:
        return int(token)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid sequence number: {token!r}") from e


class ChangeKind(str, Enum):
    """Kind of mutation. Values match the stream's eventName field."""

    CREATED = "INSERT"
    UPDATED = "MODIFY"


class ChangeEntry(BaseModel):
    """
    One captured mutation.

    Attributes:
        entry_id: Unique id assigned by the change stream
        change_kind: CREATED or UPDATED
        person_id: Record the mutation applied to
        sequence_number: Monotonic token, strictly increasing per record
        new_image: Record snapshot after the mutation
        approximate_creation_time: When the entry was appended
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    entry_id: str = Field(..., alias="eventID", min_length=1)
    change_kind: ChangeKind = Field(..., alias="eventName")
    person_id: str = Field(..., alias="personId", min_length=1)
    sequence_number: str = Field(..., alias="sequenceNumber", min_length=1)
    new_image: Person = Field(..., alias="newImage")
    approximate_creation_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="approximateCreationTime"
    )

    @property
    def sequence(self) -> int:
        return parse_sequence_number(self.sequence_number)

    def to_detail(self) -> Dict[str, Any]:
        """JSON-ready payload used as the domain event's detail."""
        return self.model_dump(mode="json", by_alias=True)

    def to_stream_record(self) -> Dict[str, Any]:
        """Render as a raw stream record."""
        return {
            "eventID": self.entry_id,
            "eventName": self.change_kind.value,
            "eventSource": STREAM_EVENT_SOURCE,
            "dynamodb": {
                "Keys": {"personId": self.person_id},
                "NewImage": self.new_image.to_item(),
                "SequenceNumber": self.sequence_number,
                "ApproximateCreationDateTime": self.approximate_creation_time.isoformat(),
            },
        }

    @classmethod
    def from_stream_record(cls, record: Mapping[str, Any]) -> "ChangeEntry":
        """
        Parse a raw stream record.

        Raises:
            ValidationError: If the record is malformed.
        """
        if not isinstance(record, Mapping):
            raise ValidationError("Stream record must be an object")
        change = record.get("dynamodb")
        if not isinstance(change, Mapping):
            raise ValidationError(
                "Stream record has no change payload",
                details={"eventID": record.get("eventID")},
            )
        keys = change.get("Keys")
        if not isinstance(keys, Mapping):
            raise ValidationError(
                "Stream record keys must be an object",
                details={"eventID": record.get("eventID")},
            )
        if not isinstance(change.get("NewImage"), Mapping):
            raise ValidationError(
                "Stream record new image must be an object",
                details={"eventID": record.get("eventID")},
            )
        data = {
            "eventID": record.get("eventID"),
            "eventName": record.get("eventName"),
            "personId": keys.get("personId"),
            "sequenceNumber": change.get("SequenceNumber"),
            "newImage": change.get("NewImage"),
        }
        if change.get("ApproximateCreationDateTime") is not None:
            data["approximateCreationTime"] = change["ApproximateCreationDateTime"]
        try:
            entry = cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Malformed stream record",
                details={"eventID": record.get("eventID"), "errors": e.error_count()},
            ) from e
        if entry.new_image.person_id != entry.person_id:
            raise ValidationError(
                "Stream record key does not match its image",
                details={"eventID": entry.entry_id},
            )
        parse_sequence_number(entry.sequence_number)
        return entry
