"""
FastAPI dependencies for dependency injection.

Components are built once by build_container() and stored on app.state;
these functions hand them to endpoints.
"""

from fastapi import Depends, Request

from app.container import Container
from app.events.relay import EventRelay
from app.events.router import EventRouter
from app.services.person_service import PersonService


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_person_service(container: Container = Depends(get_container)) -> PersonService:
    return container.service


def get_event_router(container: Container = Depends(get_container)) -> EventRouter:
    return container.router


def get_event_relay(container: Container = Depends(get_container)) -> EventRelay:
    return container.relay
