"""
Person service implementing the CRUD use cases.

Sits between the API layer and the repository. It never retries: every
repository error reaches the caller and is mapped to a terminal HTTP status.
"""

import logging
from typing import Any, List, Mapping, Union

from app.models.base import Person, PersonFields
from core.exceptions import OperationNotSupportedError, ValidationError
from infrastructure.repositories.person_repository import PersonRepository

logger = logging.getLogger(__name__)


class PersonService:
    """Service for person record operations."""

    def __init__(self, repository: PersonRepository) -> None:
        """
        Initialize the person service.

        Args:
            repository: The person repository.
        """
        self._repository = repository

    @property
    def repository(self) -> PersonRepository:
        return self._repository

    def list_persons(self) -> List[Person]:
        return self._repository.get_all()

    def get_person(self, person_id: str) -> Person:
        """
        Raises:
            ValidationError: If person_id is empty.
            RecordNotFoundError: If the person doesn't exist.
        """
        if not person_id:
            raise ValidationError("Missing personId")
        return self._repository.get(person_id)

    def create_person(self, fields: Union[PersonFields, Mapping[str, Any]]) -> str:
        """
        Create a person and return the generated id.

        Raises:
            ValidationError: If a field is missing or empty.
            StoreUnavailable: If the store cannot complete the write.
        """
        return self._repository.create(fields)

    def update_person(
        self, person_id: str, fields: Union[PersonFields, Mapping[str, Any]]
    ) -> Person:
        """
        Replace every field of an existing person.

        Raises:
            ValidationError: If the id is empty or a field is missing or empty.
            RecordNotFoundError: If the person doesn't exist.
            StoreUnavailable: If the store cannot complete the write.
        """
        return self._repository.update(person_id, fields)

    def delete_person(self, person_id: str) -> None:
        """
        Deletion is advertised but not implemented.

        Raises:
            OperationNotSupportedError: Always.
        """
        logger.warning(f"Rejected delete of person {person_id}: not implemented")
        raise OperationNotSupportedError(
            "Deleting persons is not supported", details={"person_id": person_id}
        )
