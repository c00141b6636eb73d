"""Webhook service layer for PingLater.

This module provides WebhookService, which owns storage, the dispatcher
and the retry scheduler and exposes the operations behind the HTTP API.

Example:
    ```python
    from pinglater.service import WebhookService

    async with WebhookService.create() as service:
        destination = await service.register_destination(
            "user_123",
            {"url": "https://example.com/hooks", "event_types": ["connected"]},
        )
        service.trigger("user_123", "connected")

        records, total = await service.list_deliveries("user_123", destination.id)
    ```
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from pinglater.config import Settings
from pinglater.exceptions import NotFoundError, ValidationError
from pinglater.logging import get_logger
from pinglater.models import (
    NON_NULLABLE_UPDATE_FIELDS,
    SUBSCRIBABLE_EVENT_TYPES,
    DeliveryRecord,
    DeliveryStats,
    Destination,
    DestinationCreate,
    DestinationUpdate,
    MessageData,
    utcnow,
)
from pinglater.storage import WebhookStorage
from pinglater.webhooks import RetryScheduler, WebhookDispatcher
from pinglater.webhooks.delivery import EventData

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def _to_validation_error(exc: PydanticValidationError) -> ValidationError:
    """Convert the first pydantic error into a PingLater ValidationError."""
    errors = exc.errors()
    if not errors:
        return ValidationError("request", str(exc))
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "request"
    return ValidationError(field, first.get("msg", "invalid value"))


def normalize_page(limit: int, offset: int) -> tuple[int, int]:
    """Clamp paging parameters: bad limits fall back to 50, negative offsets to 0."""
    if limit < 1 or limit > MAX_PAGE_SIZE:
        limit = DEFAULT_PAGE_SIZE
    if offset < 0:
        offset = 0
    return limit, offset


@dataclass
class WebhookService:
    """High-level webhook service.

    This service provides:
    - Destination registry: register, update, delete, list, get
    - Event fan-out: trigger(), trigger_message_received()
    - History: list_deliveries(), get_stats(), test_destination()
    - Lifecycle: start() / stop() for storage and the retry scheduler

    Every destination operation is scoped to a user. Another user's
    destination is reported as not found.

    Attributes:
        storage: Storage backend (Qdrant).
        dispatcher: Delivers events and records attempts.
        scheduler: Retries failed deliveries in the background.
        settings: Configuration settings.
    """

    storage: WebhookStorage
    dispatcher: WebhookDispatcher
    scheduler: RetryScheduler
    settings: Settings

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            http_client: Optional shared HTTP client for deliveries.

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()

        storage = WebhookStorage(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            prefix=settings.collection_prefix,
            location=settings.qdrant_location,
        )
        dispatcher = WebhookDispatcher(
            storage,
            http_client=http_client,
            timeout_seconds=settings.webhook_timeout_seconds,
            max_concurrent=settings.max_concurrent_deliveries,
            max_retries=settings.webhook_max_retries,
            user_agent=settings.webhook_user_agent,
            response_body_max_chars=settings.response_body_max_chars,
        )
        scheduler = RetryScheduler(
            storage,
            dispatcher,
            interval_seconds=settings.retry_interval_seconds,
            batch_size=settings.retry_batch_size,
            max_retries=settings.webhook_max_retries,
        )
        return cls(
            storage=storage,
            dispatcher=dispatcher,
            scheduler=scheduler,
            settings=settings,
        )

    async def start(self, run_scheduler: bool = True) -> None:
        """Initialize storage and start the retry scheduler."""
        if not self.storage.is_initialized:
            await self.storage.initialize()
        if run_scheduler:
            self.scheduler.start()
        logger.info("Webhook service started", scheduler=run_scheduler)

    async def stop(self) -> None:
        """Stop retries, drain in-flight deliveries and release resources."""
        await self.scheduler.stop()
        await self.dispatcher.wait_idle()
        await self.dispatcher.close()
        await self.storage.close()
        logger.info("Webhook service stopped")

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()

    @staticmethod
    def available_event_types() -> dict[str, str]:
        """Event types a destination can subscribe to, with descriptions."""
        return dict(SUBSCRIBABLE_EVENT_TYPES)

    # Destination registry

    async def register_destination(
        self,
        user_id: str,
        request: DestinationCreate | dict[str, Any],
    ) -> Destination:
        """Register a new destination for a user.

        Raises:
            ValidationError: If the URL or event types are invalid.
        """
        try:
            create = (
                request
                if isinstance(request, DestinationCreate)
                else DestinationCreate.model_validate(request)
            )
            destination = Destination(user_id=user_id, **create.model_dump())
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e

        await self.storage.store_destination(destination)
        logger.info(
            "Webhook registered",
            user_id=user_id,
            destination_id=destination.id,
            event_types=destination.event_types,
        )
        return destination

    async def get_destination(self, user_id: str, destination_id: str) -> Destination:
        """Get one of the user's destinations.

        Raises:
            NotFoundError: If it does not exist or belongs to another user.
        """
        destination = await self.storage.get_destination(destination_id, user_id)
        if destination is None:
            raise NotFoundError("webhook", destination_id)
        return destination

    async def list_destinations(self, user_id: str) -> list[Destination]:
        """List all of the user's destinations."""
        return await self.storage.list_destinations(user_id)

    async def update_destination(
        self,
        user_id: str,
        destination_id: str,
        request: DestinationUpdate | dict[str, Any],
    ) -> Destination:
        """Apply a partial update.

        Only supplied fields change. An explicitly supplied empty (or null)
        filter list clears that filter.

        Raises:
            NotFoundError: If the destination is not the user's.
            ValidationError: If the merged destination is invalid.
        """
        try:
            update = (
                request
                if isinstance(request, DestinationUpdate)
                else DestinationUpdate.model_validate(request)
            )
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e

        current = await self.get_destination(user_id, destination_id)

        changes = update.changes()
        for name in sorted(NON_NULLABLE_UPDATE_FIELDS & changes.keys()):
            if changes[name] is None:
                raise ValidationError(name, "may not be null")

        try:
            updated = Destination.model_validate(
                {**current.model_dump(mode="json"), **changes, "updated_at": utcnow()}
            )
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e

        await self.storage.store_destination(updated)
        logger.info(
            "Webhook updated",
            user_id=user_id,
            destination_id=destination_id,
            fields=sorted(changes),
        )
        return updated

    async def delete_destination(self, user_id: str, destination_id: str) -> None:
        """Delete a destination together with its delivery history.

        Raises:
            NotFoundError: If the destination is not the user's.
        """
        if not await self.storage.delete_destination(destination_id, user_id):
            raise NotFoundError("webhook", destination_id)
        logger.info("Webhook deleted", user_id=user_id, destination_id=destination_id)

    # Events

    def trigger(
        self,
        user_id: str,
        event_type: str,
        data: EventData = None,
    ) -> asyncio.Task[list[DeliveryRecord]]:
        """Fan an event out to the user's destinations in the background."""
        return self.dispatcher.trigger(user_id, event_type, data)

    def trigger_message_received(
        self,
        user_id: str,
        message: MessageData,
    ) -> asyncio.Task[list[DeliveryRecord]]:
        """Shortcut for a message_received event."""
        return self.trigger(user_id, "message_received", message)

    async def test_destination(self, user_id: str, destination_id: str) -> DeliveryRecord:
        """Send the test payload to a destination once and log the attempt.

        Raises:
            NotFoundError: If the destination is not the user's.
        """
        destination = await self.get_destination(user_id, destination_id)
        record = await self.dispatcher.test_deliver(destination)
        await self.dispatcher.persist(record)
        return record

    # History

    async def list_deliveries(
        self,
        user_id: str,
        destination_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> tuple[list[DeliveryRecord], int]:
        """Page through a destination's delivery history, newest first.

        Returns:
            The page of records and the total record count.

        Raises:
            NotFoundError: If the destination is not the user's.
        """
        await self.get_destination(user_id, destination_id)
        limit, offset = normalize_page(limit, offset)
        records = await self.storage.get_deliveries(destination_id, user_id, limit, offset)
        total = await self.storage.count_deliveries(destination_id, user_id)
        return records, total

    async def get_stats(self, user_id: str, destination_id: str) -> DeliveryStats:
        """Aggregate delivery outcomes for a destination.

        Raises:
            NotFoundError: If the destination is not the user's.
        """
        await self.get_destination(user_id, destination_id)
        return await self.storage.get_delivery_stats(destination_id, user_id)


__all__ = ["WebhookService", "normalize_page"]
