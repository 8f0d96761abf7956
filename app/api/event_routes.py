"""
Event pipeline endpoints.

- Stream batch ingress: hand a batch of raw stream records to the relay
- Monitoring: router/relay/poller statistics and delivery history
- Dead letters: list and redrive
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_container, get_event_relay, get_event_router
from app.api.models import RedriveResponse, StreamBatchRequest, StreamBatchResponse
from app.container import Container
from app.events.models import DeadLetter, DeliveryRecord
from app.events.relay import EventRelay
from app.events.router import EventRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["events"])


@router.post(
    "/stream/batches",
    response_model=StreamBatchResponse,
    summary="Relay a batch of stream records",
)
async def relay_stream_batch(
    request: StreamBatchRequest,
    relay: EventRelay = Depends(get_event_relay),
) -> StreamBatchResponse:
    """
    Publish a batch of raw change-stream records.

    The whole batch fails (503) if any record cannot be published; the caller
    retries the batch and gets the same event ids. A malformed record fails
    the batch with 400 before anything is published.
    """
    result = await relay.handle_batch(request.records)
    return StreamBatchResponse(published=result.published, event_ids=result.event_ids)


@router.get("/events/stats", response_model=Dict[str, Any])
async def get_event_stats(container: Container = Depends(get_container)) -> Dict[str, Any]:
    """
    Get pipeline statistics.

    Returns:
        Statistics for the change stream, relay, poller, router and consumers.
    """
    return {
        "stream": container.stream.get_statistics(),
        "relay": container.relay.get_statistics(),
        "poller": container.poller.get_statistics(),
        "router": container.router.get_statistics(),
        "consumers": {c.name: c.get_statistics() for c in container.consumers},
    }


@router.get("/events/deliveries", response_model=List[DeliveryRecord])
async def list_deliveries(
    subscription: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    event_router: EventRouter = Depends(get_event_router),
) -> List[DeliveryRecord]:
    """Recent delivery outcomes, newest first."""
    return event_router.get_deliveries(subscription=subscription, limit=limit)


@router.get("/events/dead-letters", response_model=List[DeadLetter])
async def list_dead_letters(
    subscription: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    event_router: EventRouter = Depends(get_event_router),
) -> List[DeadLetter]:
    """Events a consumer could not process, newest first."""
    return event_router.dead_letters.list(subscription=subscription, limit=limit)


@router.post(
    "/events/dead-letters/{dead_letter_id}/redrive",
    response_model=RedriveResponse,
    summary="Requeue a dead-lettered event",
)
async def redrive_dead_letter(
    dead_letter_id: str,
    event_router: EventRouter = Depends(get_event_router),
) -> RedriveResponse:
    event = await event_router.redrive(dead_letter_id)
    return RedriveResponse(dead_letter_id=dead_letter_id, event_id=event.event_id)
