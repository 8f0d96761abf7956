"""Service layer for the person service."""

from app.services.person_service import PersonService

__all__ = ["PersonService"]
