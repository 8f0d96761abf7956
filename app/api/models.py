"""
API request and response models.

These are DTOs (Data Transfer Objects) for the REST API. Field names are
camelCase on the wire.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.base import PersonFields


class PersonRequest(PersonFields):
    """Body of create and update calls: all four fields, none empty."""

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        json_schema_extra={
            "example": {
                "firstName": "Tony",
                "lastName": "Stark",
                "address": "10880 Malibu Point",
                "phoneNumber": "555-0100",
            }
        },
    )


class PersonResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    person_id: str = Field(..., alias="personId")
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    address: str
    phone_number: str = Field(..., alias="phoneNumber")


class CreatePersonResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    person_id: str = Field(..., alias="personId")


class UpdatePersonResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    person_id: str = Field(..., alias="personId")
    message: str = "Person updated"


class StreamBatchRequest(BaseModel):
    """A batch of raw stream records, as handed over by an external scheduler."""

    model_config = ConfigDict(populate_by_name=True)

    records: List[Dict[str, Any]] = Field(..., alias="Records")


class StreamBatchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    published: int
    event_ids: List[str] = Field(default_factory=list, alias="eventIds")


class RedriveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dead_letter_id: str = Field(..., alias="deadLetterId")
    event_id: str = Field(..., alias="eventId")
    status: str = "requeued"


class ErrorResponse(BaseModel):
    """Error body returned by every failing endpoint."""

    error: str
    detail: Optional[str] = None
    error_type: Optional[str] = None
