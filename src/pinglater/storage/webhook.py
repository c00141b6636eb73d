"""Webhook storage operations for PingLater.

Provides methods to store, retrieve and delete destinations, and to log,
page through and aggregate delivery records.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from qdrant_client import models

from pinglater.models import DeliveryRecord, DeliveryStats, Destination
from pinglater.storage.base import PLACEHOLDER_VECTOR
from pinglater.storage.retry import qdrant_retry

logger = logging.getLogger(__name__)

# Page size for scroll loops
_SCROLL_PAGE = 256


def _match(key: str, value: Any) -> models.FieldCondition:
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


def _destination_conditions(destination_id: str, user_id: str) -> list[models.Condition]:
    return [_match("user_id", user_id), _match("destination_id", destination_id)]


# Newest delivery records first
_NEWEST_FIRST = models.OrderBy(key="created_ts", direction=models.Direction.DESC)


class WebhookMixin:
    """Mixin providing webhook operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _build_key(record_id, user_id) -> str
    - _key_to_point_id(key) -> str
    - _record_to_payload(record) -> dict
    - _payload_to_record(payload, record_class) -> RecordT
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _build_key: Any
    _key_to_point_id: Any
    _record_to_payload: Any
    _payload_to_record: Any
    client: Any

    async def _upsert(self, kind: str, record_id: str, user_id: str, payload: dict) -> None:
        key = self._build_key(record_id, user_id)
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=self._key_to_point_id(key),
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    async def _scroll_all(
        self,
        kind: str,
        scroll_filter: models.Filter,
    ) -> list[dict[str, Any]]:
        """Collect the payloads of every point matching a filter."""
        payloads: list[dict[str, Any]] = []
        offset = None
        while True:
            points, offset = await self.client.scroll(
                collection_name=self._collection_name(kind),
                scroll_filter=scroll_filter,
                limit=_SCROLL_PAGE,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            payloads.extend(p.payload for p in points if p.payload is not None)
            if offset is None:
                return payloads

    # Destinations

    @qdrant_retry
    async def store_destination(self, destination: Destination) -> str:
        """Store (insert or replace) a destination.

        Args:
            destination: Destination to store.

        Returns:
            The destination ID.
        """
        payload = self._record_to_payload(destination)
        await self._upsert("destinations", destination.id, destination.user_id, payload)
        return destination.id

    @qdrant_retry
    async def get_destination(self, destination_id: str, user_id: str) -> Destination | None:
        """Get a destination owned by user_id.

        Returns:
            Destination or None if it does not exist or belongs to another user.
        """
        key = self._build_key(destination_id, user_id)
        results = await self.client.retrieve(
            collection_name=self._collection_name("destinations"),
            ids=[self._key_to_point_id(key)],
            with_payload=True,
        )

        if not results or results[0].payload is None:
            return None

        destination: Destination = self._payload_to_record(results[0].payload, Destination)
        return destination

    @qdrant_retry
    async def list_destinations(self, user_id: str) -> list[Destination]:
        """List a user's destinations, oldest first."""
        payloads = await self._scroll_all(
            "destinations",
            models.Filter(must=[_match("user_id", user_id)]),
        )
        destinations = [self._payload_to_record(p, Destination) for p in payloads]
        destinations.sort(key=lambda d: d.created_at)
        return destinations

    @qdrant_retry
    async def find_active_subscribers(self, user_id: str, event_type: str) -> list[Destination]:
        """Get the user's active destinations subscribed to an event type.

        Args:
            user_id: Owner of the destinations.
            event_type: Event type tag, matched case-insensitively.

        Returns:
            Matching destinations, in no particular order.
        """
        tag = event_type.strip().lower()
        payloads = await self._scroll_all(
            "destinations",
            models.Filter(
                must=[
                    _match("user_id", user_id),
                    _match("active", True),
                    _match("event_types", tag),
                ]
            ),
        )
        destinations = [self._payload_to_record(p, Destination) for p in payloads]
        return [d for d in destinations if d.subscribes_to(tag)]

    @qdrant_retry
    async def delete_destination(self, destination_id: str, user_id: str) -> bool:
        """Delete a destination and every delivery record that references it.

        Args:
            destination_id: ID of the destination to delete.
            user_id: Owner of the destination.

        Returns:
            True if deleted, False if not found.
        """
        if await self.get_destination(destination_id, user_id) is None:
            return False

        # Destination goes first so in-flight deliveries see it missing
        key = self._build_key(destination_id, user_id)
        await self.client.delete(
            collection_name=self._collection_name("destinations"),
            points_selector=models.PointIdsList(points=[self._key_to_point_id(key)]),
        )

        await self.client.delete(
            collection_name=self._collection_name("deliveries"),
            points_selector=models.FilterSelector(
                filter=models.Filter(must=_destination_conditions(destination_id, user_id))
            ),
        )
        return True

    # Deliveries

    @qdrant_retry
    async def log_delivery(self, record: DeliveryRecord) -> str:
        """Persist a delivery record.

        Args:
            record: DeliveryRecord to store.

        Returns:
            The record ID.
        """
        payload = self._record_to_payload(record)
        await self._upsert("deliveries", record.id, record.user_id, payload)
        return record.id

    @qdrant_retry
    async def update_delivery(self, record: DeliveryRecord) -> bool:
        """Write a delivery record's new state over its stored point.

        Never creates a point: a record removed by a cascade delete while
        it was being retried stays removed.

        Returns:
            True if the record was stored when checked, False otherwise.
        """
        key = self._build_key(record.id, record.user_id)
        point_id = self._key_to_point_id(key)
        collection_name = self._collection_name("deliveries")

        existing = await self.client.retrieve(
            collection_name=collection_name,
            ids=[point_id],
            with_payload=False,
        )
        if not existing:
            logger.debug(
                "Skipping update of missing delivery record",
                extra={"delivery_id": record.id, "destination_id": record.destination_id},
            )
            return False

        # Selecting by id through a filter matches nothing once the point is gone
        await self.client.overwrite_payload(
            collection_name=collection_name,
            payload=self._record_to_payload(record),
            points=models.FilterSelector(
                filter=models.Filter(must=[models.HasIdCondition(has_id=[point_id])])
            ),
        )
        return True

    async def _newest_deliveries(
        self,
        destination_id: str,
        user_id: str,
        limit: int,
    ) -> list[DeliveryRecord]:
        points, _ = await self.client.scroll(
            collection_name=self._collection_name("deliveries"),
            scroll_filter=models.Filter(must=_destination_conditions(destination_id, user_id)),
            limit=limit,
            order_by=_NEWEST_FIRST,
            with_payload=True,
            with_vectors=False,
        )
        records = [
            self._payload_to_record(p.payload, DeliveryRecord)
            for p in points
            if p.payload is not None
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    @qdrant_retry
    async def get_deliveries(
        self,
        destination_id: str,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryRecord]:
        """Page through a destination's delivery records.

        Reads at most offset + limit records, ordered by the indexed
        created_ts payload field.

        Args:
            destination_id: Destination the records belong to.
            user_id: Owner of the destination.
            limit: Maximum records to return.
            offset: Number of newest records to skip.

        Returns:
            DeliveryRecords sorted by created_at (newest first).
        """
        if limit <= 0:
            return []
        records = await self._newest_deliveries(destination_id, user_id, offset + limit)
        return records[offset:]

    @qdrant_retry
    async def count_deliveries(
        self,
        destination_id: str,
        user_id: str,
        success: bool | None = None,
    ) -> int:
        """Count a destination's delivery records, optionally by outcome."""
        conditions = _destination_conditions(destination_id, user_id)
        if success is not None:
            conditions.append(_match("success", success))

        result = await self.client.count(
            collection_name=self._collection_name("deliveries"),
            count_filter=models.Filter(must=conditions),
            exact=True,
        )
        return int(result.count)

    @qdrant_retry
    async def get_due_deliveries(
        self,
        now: datetime,
        max_retries: int,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """Get failed records whose next attempt is due, across all users.

        Used by the retry scheduler. A record is due when it has not
        succeeded, has retries left and its next_retry_at is not after now.

        Args:
            now: Reference time.
            max_retries: Retry ceiling; records at the ceiling are skipped.
            limit: Maximum records to return.

        Returns:
            Due records, most overdue first.
        """
        now_ts = now.timestamp()
        payloads = await self._scroll_all(
            "deliveries",
            models.Filter(
                must=[
                    _match("success", False),
                    models.FieldCondition(key="retry_count", range=models.Range(lt=max_retries)),
                    models.FieldCondition(key="next_retry_ts", range=models.Range(lte=now_ts)),
                ]
            ),
        )
        records = [self._payload_to_record(p, DeliveryRecord) for p in payloads]
        due = [
            r
            for r in records
            if not r.success
            and r.retry_count < max_retries
            and r.next_retry_at is not None
            and r.next_retry_at <= now
        ]
        due.sort(key=lambda r: r.next_retry_at or r.created_at)
        return due[:limit]

    @qdrant_retry
    async def get_delivery_stats(self, destination_id: str, user_id: str) -> DeliveryStats:
        """Aggregate delivery outcomes for a destination.

        Uses two counts and a single-record read for the latest outcome.

        Returns:
            DeliveryStats with counts, success rate and the latest outcome.
        """
        total = await self.count_deliveries(destination_id, user_id)
        successful = await self.count_deliveries(destination_id, user_id, success=True)
        stats = DeliveryStats(
            total_deliveries=total,
            successful=successful,
            failed=total - successful,
            success_rate=DeliveryStats.format_rate(successful, total),
        )

        if total:
            latest = await self._newest_deliveries(destination_id, user_id, 1)
            if latest:
                stats.last_delivery_at = latest[0].created_at
                stats.last_delivery_success = latest[0].success

        return stats
