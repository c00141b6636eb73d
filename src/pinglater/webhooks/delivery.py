"""Webhook delivery with HMAC signatures and delivery logging.

Each event fans out to the user's matching destinations. Every destination
gets one independent POST and one persisted DeliveryRecord. Failed first
attempts are scheduled for the RetryScheduler.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from pinglater.logging import get_logger
from pinglater.models import DeliveryRecord, Destination, MessageData, WebhookPayload, utcnow

from .backoff import MAX_RETRIES, schedule_next_attempt
from .filters import matches_filters
from .signature import SIGNATURE_HEADER, SIGNATURE_PREFIX, sign_payload

if TYPE_CHECKING:
    from pinglater.storage import WebhookStorage

logger = get_logger(__name__)

DEFAULT_USER_AGENT = "PingLater-Webhook/1.0"

EventData = MessageData | dict[str, Any] | None


@dataclass
class DeliveryResult:
    """Outcome of a single HTTP attempt.

    status_code is 0 when no response was received.
    """

    success: bool
    status_code: int = 0
    response_body: str = ""
    error: str | None = None


class WebhookDispatcher:
    """Dispatches events to registered destinations.

    Handles:
    - Finding active destinations subscribed to an event type
    - Applying message filters
    - Signing payloads with HMAC-SHA256
    - Recording every attempt and scheduling retries for failures

    Dispatches started with trigger() are tracked, so shutdown and tests
    can wait for them with wait_idle().

    Example:
        ```python
        dispatcher = WebhookDispatcher(storage)

        # Fire and forget
        dispatcher.trigger("user_123", "connected")

        # Or await the records
        records = await dispatcher.dispatch("user_123", "message_received", message)
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        max_concurrent: int = 10,
        max_retries: int = MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        response_body_max_chars: int = 1000,
    ) -> None:
        """Initialize the webhook dispatcher.

        Args:
            storage: Storage for destinations and delivery records.
            http_client: Shared HTTP client. One is created on first use
                when omitted, and closed by close().
            timeout_seconds: Timeout for a single attempt.
            max_concurrent: Maximum concurrent outbound requests.
            max_retries: Retry ceiling used when scheduling failures.
            user_agent: User-Agent header value.
            response_body_max_chars: Response body characters kept on records.
        """
        self._storage = storage
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout_seconds
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._max_retries = max_retries
        self._user_agent = user_agent
        self._body_limit = response_body_max_chars
        self._tasks: set[asyncio.Task[list[DeliveryRecord]]] = set()

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Shared HTTP client for all attempts."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @property
    def pending(self) -> int:
        """Number of triggered dispatches still running."""
        return len(self._tasks)

    def trigger(
        self,
        user_id: str,
        event_type: str,
        data: EventData = None,
    ) -> asyncio.Task[list[DeliveryRecord]]:
        """Dispatch an event in the background.

        Must be called from a running event loop.

        Returns:
            The tracked task, resolving to the created delivery records.
        """
        task = asyncio.create_task(
            self.dispatch(user_id, event_type, data),
            name=f"webhook-dispatch-{event_type}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch(
        self,
        user_id: str,
        event_type: str,
        data: EventData = None,
    ) -> list[DeliveryRecord]:
        """Deliver an event to every matching destination.

        Args:
            user_id: Owner of the destinations.
            event_type: Event type tag.
            data: MessageData for message events (filters apply), a plain
                mapping, or None for connection events.

        Returns:
            One DeliveryRecord per destination attempted.
        """
        try:
            destinations = await self._storage.find_active_subscribers(user_id, event_type)
        except Exception:
            logger.exception(
                "Failed to look up webhook subscribers",
                user_id=user_id,
                event_type=event_type,
            )
            return []

        if isinstance(data, MessageData):
            destinations = [d for d in destinations if matches_filters(d, data)]

        if not destinations:
            logger.debug("No webhooks matched event", user_id=user_id, event_type=event_type)
            return []

        results = await asyncio.gather(
            *(self._deliver(destination, event_type, data) for destination in destinations),
            return_exceptions=True,
        )

        records: list[DeliveryRecord] = []
        for destination, result in zip(destinations, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Webhook delivery task failed",
                    destination_id=destination.id,
                    error=str(result),
                )
            else:
                records.append(result)
        return records

    async def _deliver(
        self,
        destination: Destination,
        event_type: str,
        data: EventData,
    ) -> DeliveryRecord:
        """Make the first attempt for one destination and record it."""
        created_at = utcnow()
        body = b""
        try:
            body = WebhookPayload.build(destination.id, event_type, data).to_bytes()
            result = await self.redeliver(destination, body)
        except Exception as e:
            logger.exception("Webhook delivery error", destination_id=destination.id)
            result = DeliveryResult(success=False, error=f"Unexpected error: {e}")

        record = DeliveryRecord(
            destination_id=destination.id,
            user_id=destination.user_id,
            event_type=event_type,
            payload=body.decode("utf-8"),
            created_at=created_at,
            updated_at=created_at,
        )
        record.record_outcome(
            result.success, result.status_code, result.response_body, result.error
        )
        # An empty body means the payload could not be built; resending cannot help
        if body:
            schedule_next_attempt(record, utcnow(), self._max_retries)

        self._log_result(destination, event_type, result, record)
        await self.persist(record)
        return record

    async def redeliver(self, destination: Destination, body: bytes) -> DeliveryResult:
        """Send payload bytes to a destination, signed with its current secret."""
        signature = sign_payload(body, destination.secret) if destination.secret else None
        async with self._semaphore:
            return await self.send_once(str(destination.url), body, signature)

    async def send_once(
        self,
        url: str,
        payload: bytes,
        signature: str | None = None,
    ) -> DeliveryResult:
        """POST a payload once. Never raises.

        Args:
            url: Destination URL.
            payload: Exact JSON bytes to send.
            signature: Hex HMAC digest of payload, or None when unsigned.

        Returns:
            DeliveryResult. Success means a 2xx response.
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        if signature:
            headers[SIGNATURE_HEADER] = f"{SIGNATURE_PREFIX}{signature}"

        try:
            response = await self.http_client.post(
                url,
                content=payload,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            return DeliveryResult(success=False, error="Request timeout")
        except httpx.HTTPError as e:
            return DeliveryResult(success=False, error=str(e) or type(e).__name__)
        except Exception as e:
            logger.exception("Unexpected error sending webhook", url=url)
            return DeliveryResult(success=False, error=f"Unexpected error: {e}")

        body = response.text[: self._body_limit] if response.text else ""
        if 200 <= response.status_code < 300:
            return DeliveryResult(
                success=True,
                status_code=response.status_code,
                response_body=body,
            )
        return DeliveryResult(
            success=False,
            status_code=response.status_code,
            response_body=body,
            error=f"HTTP {response.status_code}",
        )

    async def test_deliver(self, destination: Destination) -> DeliveryRecord:
        """Send the static test payload once.

        The attempt is never retried and the record is returned unpersisted.
        """
        body = WebhookPayload.for_test(destination.id).to_bytes()
        result = await self.redeliver(destination, body)

        record = DeliveryRecord(
            destination_id=destination.id,
            user_id=destination.user_id,
            event_type="test",
            payload=body.decode("utf-8"),
        )
        record.record_outcome(
            result.success, result.status_code, result.response_body, result.error
        )
        self._log_result(destination, "test", result, record)
        return record

    async def persist(self, record: DeliveryRecord) -> None:
        """Store a delivery record unless its destination no longer exists."""
        # A record that cannot be stored is lost, not retried
        try:
            # The destination may have been deleted while the request was in flight
            if await self._storage.get_destination(record.destination_id, record.user_id) is None:
                logger.debug(
                    "Dropping delivery record for deleted destination",
                    delivery_id=record.id,
                    destination_id=record.destination_id,
                )
                return
            await self._storage.log_delivery(record)
        except Exception:
            logger.exception(
                "Failed to store delivery record",
                delivery_id=record.id,
                destination_id=record.destination_id,
            )

    @staticmethod
    def _log_result(
        destination: Destination,
        event_type: str,
        result: DeliveryResult,
        record: DeliveryRecord,
    ) -> None:
        if result.success:
            logger.info(
                "Webhook delivered",
                destination_id=destination.id,
                event_type=event_type,
                status_code=result.status_code,
            )
        else:
            logger.warning(
                "Webhook delivery failed",
                destination_id=destination.id,
                event_type=event_type,
                status_code=result.status_code,
                error=result.error,
                next_retry_at=record.next_retry_at.isoformat() if record.next_retry_at else None,
            )

    async def wait_idle(self) -> None:
        """Wait until every triggered dispatch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
