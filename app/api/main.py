"""
FastAPI application for the person service.

This module provides the application factory with the person CRUD endpoints
and mounts the event pipeline and health routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import event_routes, health
from app.api.dependencies import get_person_service
from app.api.models import (
    CreatePersonResponse,
    ErrorResponse,
    PersonRequest,
    PersonResponse,
    UpdatePersonResponse,
)
from app.config import Settings, get_settings, log_config_summary
from app.container import Container, build_container
from app.logging_config import configure_structured_logging
from app.services.person_service import PersonService
from core.exceptions import PersonServiceError, get_http_status

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

_ERROR_TITLES = {
    400: "Invalid request",
    404: "Not found",
    410: "Gone",
    500: "Internal error",
    501: "Not implemented",
    503: "Service unavailable",
}

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# Exception Handlers


async def domain_error_handler(request: Request, exc: PersonServiceError) -> JSONResponse:
    status_code = get_http_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": _ERROR_TITLES.get(status_code, "Error"),
            "detail": str(exc),
            "error_type": type(exc).__name__,
        },
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid request",
            "detail": "; ".join(problems),
            "error_type": "ValidationError",
        },
    )


# Person endpoints

persons_router = APIRouter(prefix="/persons", tags=["Persons"], responses=_ERROR_RESPONSES)


@persons_router.get(
    "",
    response_model=List[PersonResponse],
    summary="List all persons",
)
def list_persons(service: PersonService = Depends(get_person_service)):
    """
    Get every person record. Order is unspecified and results are not paginated.
    """
    return [person.to_item() for person in service.list_persons()]


@persons_router.get(
    "/{person_id}",
    response_model=PersonResponse,
    summary="Get a person by ID",
)
def get_person(person_id: str, service: PersonService = Depends(get_person_service)):
    return service.get_person(person_id).to_item()


@persons_router.post(
    "",
    response_model=CreatePersonResponse,
    status_code=status.HTTP_200_OK,
    summary="Create a person",
)
def create_person(
    request: PersonRequest,
    service: PersonService = Depends(get_person_service),
):
    """
    Create a person record with a server-generated id.

    - **firstName**, **lastName**, **address**, **phoneNumber**: required, non-empty
    """
    person_id = service.create_person(request)
    return CreatePersonResponse(person_id=person_id)


@persons_router.put(
    "/{person_id}",
    response_model=UpdatePersonResponse,
    summary="Replace a person's fields",
)
def update_person(
    person_id: str,
    request: PersonRequest,
    service: PersonService = Depends(get_person_service),
):
    """
    Replace all four fields of an existing person. Unknown ids are not created.
    """
    person = service.update_person(person_id, request)
    return UpdatePersonResponse(person_id=person.person_id)


@persons_router.delete(
    "/{person_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a person (not implemented)",
    responses={501: {"model": ErrorResponse}},
)
def delete_person(person_id: str, service: PersonService = Depends(get_person_service)):
    service.delete_person(person_id)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[Container] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration. Defaults to get_settings().
        container: Pre-wired components. Defaults to build_container(settings).
    """
    settings = settings or get_settings()

    # Configure logging (structured JSON or standard format)
    configure_structured_logging(
        level=settings.LOG_LEVEL,
        enable_json=settings.LOG_JSON_FORMAT,
    )

    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_config_summary(settings)
        await container.start()
        logger.info(
            f"Person service started ({container.repository.count()} records loaded)"
        )
        yield
        logger.info("Person service shutting down")
        await container.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        lifespan=lifespan,
        title="Person Service API",
        description="Person records with change notification",
        version=API_VERSION,
        debug=settings.DEBUG,
        docs_url="/docs" if settings.ENABLE_DOCS else None,
        redoc_url="/redoc" if settings.ENABLE_DOCS else None,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PersonServiceError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(persons_router)
    app.include_router(event_routes.router)
    app.include_router(health.router)

    @app.get("/", tags=["Root"])
    def root() -> Dict[str, Any]:
        """
        Root endpoint with API information.
        """
        return {
            "name": "Person Service API",
            "version": API_VERSION,
            "table": settings.TABLE_NAME,
            "documentation": "/docs" if settings.ENABLE_DOCS else None,
            "health_check": "/health",
        }

    return app
