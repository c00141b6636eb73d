"""Background retry of failed deliveries.

Every tick selects due records (failed, retries left, next_retry_at
passed), resends their stored payload and reschedules or exhausts them.
A tick finishes its whole batch before the next one starts, so a record
is never retried twice at the same time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from pinglater.logging import get_logger
from pinglater.models import DeliveryRecord, utcnow

from .backoff import MAX_RETRIES, backoff_delay, schedule_next_attempt

if TYPE_CHECKING:
    from pinglater.storage import WebhookStorage

    from .delivery import WebhookDispatcher

logger = get_logger(__name__)


class RetryScheduler:
    """Periodically retries failed deliveries.

    Example:
        ```python
        scheduler = RetryScheduler(storage, dispatcher, interval_seconds=60)
        scheduler.start()
        ...
        await scheduler.stop()  # lets the running batch finish
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        dispatcher: WebhookDispatcher,
        interval_seconds: float = 60.0,
        batch_size: int = 100,
        max_retries: int = MAX_RETRIES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the ticking loop. Calling start() twice is a no-op."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="webhook-retry-scheduler")

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the in-flight batch."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        logger.info("Retry scheduler started", interval_seconds=self._interval)
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.run_once()
            except Exception:
                # Storage outages must not kill the loop
                logger.exception("Retry tick failed")
        logger.info("Retry scheduler stopped")

    async def run_once(self, now: datetime | None = None) -> int:
        """Run one tick.

        Args:
            now: Reference time for selecting due records. Defaults to the
                scheduler clock.

        Returns:
            Number of records processed.
        """
        now = now or self._clock()
        records = await self._storage.get_due_deliveries(
            now=now,
            max_retries=self._max_retries,
            limit=self._batch_size,
        )
        if not records:
            return 0

        logger.debug("Retrying due deliveries", count=len(records))
        results = await asyncio.gather(
            *(self.retry_delivery(record, now) for record in records),
            return_exceptions=True,
        )
        for record, result in zip(records, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Delivery retry failed",
                    delivery_id=record.id,
                    error=str(result),
                )
        return len(records)

    async def retry_delivery(
        self,
        record: DeliveryRecord,
        now: datetime | None = None,
    ) -> DeliveryRecord:
        """Re-attempt one delivery and persist its new state.

        The stored payload bytes are resent and signed with the
        destination's current secret. The next attempt is scheduled from
        the time this one finished. A destination that was deleted ends
        the record's retries. An inactive one postpones the record without
        counting an attempt.
        """
        now = now or self._clock()
        destination = await self._storage.get_destination(record.destination_id, record.user_id)

        if destination is None:
            record.next_retry_at = None
            record.updated_at = now
            await self._storage.update_delivery(record)
            logger.info(
                "Dropped retry for missing destination",
                delivery_id=record.id,
                destination_id=record.destination_id,
            )
            return record

        if not destination.active:
            record.next_retry_at = now + backoff_delay(record.retry_count)
            record.updated_at = now
            await self._storage.update_delivery(record)
            logger.debug(
                "Postponed retry for inactive destination",
                delivery_id=record.id,
                destination_id=destination.id,
            )
            return record

        result = await self._dispatcher.redeliver(destination, record.payload.encode("utf-8"))

        record.retry_count += 1
        record.record_outcome(
            result.success, result.status_code, result.response_body, result.error
        )
        finished = max(now, self._clock())
        schedule_next_attempt(record, finished, self._max_retries)
        await self._storage.update_delivery(record)

        if result.success:
            logger.info(
                "Webhook retry delivered",
                delivery_id=record.id,
                retry_count=record.retry_count,
            )
        elif record.next_retry_at is None:
            logger.warning(
                "Webhook retries exhausted",
                delivery_id=record.id,
                destination_id=destination.id,
                retry_count=record.retry_count,
                error=result.error,
            )
        else:
            logger.info(
                "Webhook retry failed",
                delivery_id=record.id,
                retry_count=record.retry_count,
                next_retry_at=record.next_retry_at.isoformat(),
            )
        return record
