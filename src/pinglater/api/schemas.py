"""Pydantic schemas for API responses.

Request bodies reuse DestinationCreate and DestinationUpdate from
pinglater.models. Responses never include a destination's secret.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from pinglater.models import DeliveryRecord, DeliveryStats, Destination


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, unhealthy).
        version: API version.
        storage_connected: Whether storage is connected.
        scheduler_running: Whether the retry scheduler is ticking.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    storage_connected: bool
    scheduler_running: bool = False


class EventTypeInfo(BaseModel):
    """A subscribable event type."""

    model_config = ConfigDict(extra="forbid")

    type: str
    description: str


class EventTypesResponse(BaseModel):
    """Response listing the event types a webhook can subscribe to."""

    model_config = ConfigDict(extra="forbid")

    events: list[EventTypeInfo]


class DestinationResponse(BaseModel):
    """Public view of a destination.

    Attributes:
        has_secret: Whether deliveries are signed. The secret itself is
            never returned.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    url: str
    description: str | None = None
    event_types: list[str]
    active: bool
    has_secret: bool
    filter_chat_type: str
    filter_phone_numbers: list[str] = Field(default_factory=list)
    filter_phone_match_type: str
    filter_group_jids: list[str] = Field(default_factory=list)
    filter_group_names: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_destination(cls, destination: Destination) -> DestinationResponse:
        return cls(
            id=destination.id,
            url=str(destination.url),
            description=destination.description,
            event_types=list(destination.event_types),
            active=destination.active,
            has_secret=destination.is_signed,
            filter_chat_type=destination.filter_chat_type,
            filter_phone_numbers=destination.filter_phone_numbers,
            filter_phone_match_type=destination.filter_phone_match_type,
            filter_group_jids=destination.filter_group_jids,
            filter_group_names=destination.filter_group_names,
            created_at=destination.created_at,
            updated_at=destination.updated_at,
        )


class DestinationListResponse(BaseModel):
    """Response for listing a user's webhooks."""

    model_config = ConfigDict(extra="forbid")

    webhooks: list[DestinationResponse]
    count: int = Field(ge=0)


class DeliveryResponse(BaseModel):
    """One delivery record."""

    model_config = ConfigDict(extra="forbid")

    id: str
    webhook_id: str
    event_type: str
    payload: str
    success: bool
    response_status: int
    response_body: str
    error_message: str | None = None
    retry_count: int
    next_retry_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> DeliveryResponse:
        return cls(
            id=record.id,
            webhook_id=record.destination_id,
            event_type=record.event_type,
            payload=record.payload,
            success=record.success,
            response_status=record.response_status,
            response_body=record.response_body,
            error_message=record.error_message,
            retry_count=record.retry_count,
            next_retry_at=record.next_retry_at,
            created_at=record.created_at,
        )


class DeliveryListResponse(BaseModel):
    """A page of delivery history.

    Attributes:
        deliveries: Records on this page, newest first.
        total: Total records for the webhook.
        limit: Page size actually applied.
        offset: Offset actually applied.
    """

    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    total: int = Field(ge=0)
    limit: int
    offset: int


class WebhookStatsResponse(BaseModel):
    """Delivery statistics for a webhook."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    total_deliveries: int
    successful: int
    failed: int
    success_rate: str
    last_delivery_at: datetime | None = None
    last_delivery_success: bool | None = None

    @classmethod
    def from_stats(cls, webhook_id: str, stats: DeliveryStats) -> WebhookStatsResponse:
        return cls(webhook_id=webhook_id, **stats.model_dump())


class DeliveryTestResponse(BaseModel):
    """Outcome of an on-demand test delivery."""

    model_config = ConfigDict(extra="forbid")

    delivery_id: str
    success: bool
    status_code: int
    response_body: str
    error_message: str | None = None
