"""FastAPI router for PingLater webhook endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from pinglater import __version__
from pinglater.models import DestinationCreate, DestinationUpdate
from pinglater.service import DEFAULT_PAGE_SIZE, WebhookService, normalize_page

from .auth import AuthDependency, AuthenticatedUser
from .schemas import (
    DeliveryListResponse,
    DeliveryResponse,
    DeliveryTestResponse,
    DestinationListResponse,
    DestinationResponse,
    EventTypeInfo,
    EventTypesResponse,
    HealthResponse,
    WebhookStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]
UserDep = Annotated[AuthenticatedUser, Depends(AuthDependency())]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health, including storage connectivity."""
    if _service is None or not _service.storage.is_initialized:
        return HealthResponse(
            status="unhealthy",
            version=__version__,
            storage_connected=False,
        )
    return HealthResponse(
        status="healthy",
        version=__version__,
        storage_connected=True,
        scheduler_running=_service.scheduler.running,
    )


@router.get("/webhooks/events", response_model=EventTypesResponse, tags=["webhooks"])
async def list_event_types(user: UserDep) -> EventTypesResponse:
    """List the event types a webhook can subscribe to."""
    return EventTypesResponse(
        events=[
            EventTypeInfo(type=name, description=description)
            for name, description in WebhookService.available_event_types().items()
        ]
    )


@router.get("/webhooks", response_model=DestinationListResponse, tags=["webhooks"])
async def list_webhooks(user: UserDep, service: ServiceDep) -> DestinationListResponse:
    """List the caller's webhooks. Secrets are never returned."""
    destinations = await service.list_destinations(user.user_id)
    return DestinationListResponse(
        webhooks=[DestinationResponse.from_destination(d) for d in destinations],
        count=len(destinations),
    )


@router.post(
    "/webhooks",
    response_model=DestinationResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: DestinationCreate,
    user: UserDep,
    service: ServiceDep,
) -> DestinationResponse:
    """Register a webhook.

    Args:
        request: URL, event types, optional secret and filters.
        user: Authenticated caller.
        service: Injected WebhookService.

    Returns:
        The registered webhook.
    """
    destination = await service.register_destination(user.user_id, request)
    return DestinationResponse.from_destination(destination)


@router.get("/webhooks/{webhook_id}", response_model=DestinationResponse, tags=["webhooks"])
async def get_webhook(webhook_id: str, user: UserDep, service: ServiceDep) -> DestinationResponse:
    """Get one of the caller's webhooks."""
    destination = await service.get_destination(user.user_id, webhook_id)
    return DestinationResponse.from_destination(destination)


@router.put("/webhooks/{webhook_id}", response_model=DestinationResponse, tags=["webhooks"])
async def update_webhook(
    webhook_id: str,
    request: DestinationUpdate,
    user: UserDep,
    service: ServiceDep,
) -> DestinationResponse:
    """Partially update a webhook.

    Only fields present in the body change. Sending an empty list for a
    filter clears it.
    """
    destination = await service.update_destination(user.user_id, webhook_id, request)
    return DestinationResponse.from_destination(destination)


@router.delete(
    "/webhooks/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(webhook_id: str, user: UserDep, service: ServiceDep) -> Response:
    """Delete a webhook and its delivery history."""
    await service.delete_destination(user.user_id, webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["webhooks"],
)
async def list_webhook_deliveries(
    webhook_id: str,
    user: UserDep,
    service: ServiceDep,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> DeliveryListResponse:
    """Page through a webhook's delivery history, newest first.

    A limit outside 1..100 falls back to 50 and a negative offset to 0.
    """
    limit, offset = normalize_page(limit, offset)
    records, total = await service.list_deliveries(user.user_id, webhook_id, limit, offset)
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.from_record(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/webhooks/{webhook_id}/stats",
    response_model=WebhookStatsResponse,
    tags=["webhooks"],
)
async def get_webhook_stats(
    webhook_id: str,
    user: UserDep,
    service: ServiceDep,
) -> WebhookStatsResponse:
    """Delivery statistics for a webhook."""
    stats = await service.get_stats(user.user_id, webhook_id)
    return WebhookStatsResponse.from_stats(webhook_id, stats)


@router.post(
    "/webhooks/{webhook_id}/test",
    response_model=DeliveryTestResponse,
    tags=["webhooks"],
)
async def test_webhook(
    webhook_id: str,
    user: UserDep,
    service: ServiceDep,
) -> DeliveryTestResponse:
    """Send a test payload to a webhook once, without retries."""
    record = await service.test_destination(user.user_id, webhook_id)
    logger.info("Test delivery sent", extra={"webhook_id": webhook_id, "success": record.success})
    return DeliveryTestResponse(
        delivery_id=record.id,
        success=record.success,
        status_code=record.response_status,
        response_body=record.response_body,
        error_message=record.error_message,
    )
