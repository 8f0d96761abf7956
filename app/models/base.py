"""
Base models for person records.

Person records have a fixed schema: four required string fields plus the
store-assigned personId. Field names are snake_case in Python and camelCase
on the wire (API bodies, change-stream images, event details).
"""

from typing import Any, Dict, Mapping, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError

def generate_person_id() -> str:
    """Generate a new globally unique person id."""
    return str(uuid4())


class PersonFields(BaseModel):
    """
    The mutable part of a person record.

    Every field is required and must contain at least one non-whitespace
    character. Values are stored exactly as given.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    first_name: str = Field(..., alias="firstName", min_length=1)
    last_name: str = Field(..., alias="lastName", min_length=1)
    address: str = Field(..., alias="address", min_length=1)
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)

    @field_validator("first_name", "last_name", "address", "phone_number")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @classmethod
    def from_input(cls, data: Union["PersonFields", Mapping[str, Any]]) -> "PersonFields":
        """
        Build fields from a model or a camelCase mapping.

        Raises:
            ValidationError: If a field is missing, empty or not a string.
        """
        if isinstance(data, PersonFields):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("Person fields must be a JSON object")
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationError(
                "Invalid person fields",
                details={"errors": "; ".join(problems)},
            ) from e


class Person(PersonFields):
    """A stored person record. Identity is person_id."""

    person_id: str = Field(..., alias="personId", min_length=1)

    @classmethod
    def from_fields(cls, person_id: str, fields: PersonFields) -> "Person":
        return cls(person_id=person_id, **fields.model_dump(include=set(PersonFields.model_fields)))

    def to_fields(self) -> PersonFields:
        return PersonFields(**self.model_dump(exclude={"person_id"}))

    def to_item(self) -> Dict[str, str]:
        """camelCase dict used for storage, images and API responses."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "Person":
        return cls.model_validate(dict(item))
