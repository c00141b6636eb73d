"""Base storage class and helpers.

Contains initialization, collection management, and shared utilities.
"""

from __future__ import annotations

import hashlib
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from pinglater.config import settings
from pinglater.models import DeliveryRecord, Destination

RecordT = TypeVar("RecordT", Destination, DeliveryRecord)

# Collection names by record kind
COLLECTION_NAMES = {
    "destinations": "destinations",
    "deliveries": "deliveries",
}

# Records are looked up by payload only. Qdrant still requires a vector,
# so every point carries the same one-dimensional placeholder.
PLACEHOLDER_VECTOR_DIM = 1
PLACEHOLDER_VECTOR = [0.0]

# Payload fields written for indexing only, never part of a record
_DERIVED_FIELDS = ("next_retry_ts", "created_ts")

# Payload indexes per collection
_PAYLOAD_INDEXES: dict[str, dict[str, models.PayloadSchemaType]] = {
    "destinations": {
        "user_id": models.PayloadSchemaType.KEYWORD,
        "active": models.PayloadSchemaType.BOOL,
        "event_types": models.PayloadSchemaType.KEYWORD,
    },
    "deliveries": {
        "user_id": models.PayloadSchemaType.KEYWORD,
        "destination_id": models.PayloadSchemaType.KEYWORD,
        "success": models.PayloadSchemaType.BOOL,
        "retry_count": models.PayloadSchemaType.INTEGER,
        "next_retry_ts": models.PayloadSchemaType.FLOAT,
        "created_ts": models.PayloadSchemaType.FLOAT,
    },
}


class StorageBase:
    """Base class for PingLater storage with initialization and helpers.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Key building and point ID conversion
    - Payload serialization/deserialization
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        location: str | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            location: Local Qdrant location (":memory:" or a path). Takes
                precedence over url. Defaults to settings.qdrant_location.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._location = location or settings.qdrant_location
        self._client: AsyncQdrantClient | None = None
        self._collections_initialized = False

    @property
    def is_initialized(self) -> bool:
        """Whether initialize() has connected and created collections."""
        return self._client is not None and self._collections_initialized

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Initialize the storage client and ensure collections exist."""
        if self._location is not None:
            self._client = AsyncQdrantClient(location=self._location)
        else:
            self._client = AsyncQdrantClient(
                url=self._url,
                api_key=self._api_key,
            )
        await self._ensure_collections()
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    def _collection_name(self, kind: str) -> str:
        """Get full collection name with prefix."""
        suffix = COLLECTION_NAMES.get(kind, kind)
        return f"{self._prefix}_{suffix}"

    @staticmethod
    def _build_key(record_id: str, user_id: str) -> str:
        """Build an ownership-scoped storage key: personal/{user_id}/{record_id}."""
        return f"personal/{user_id}/{record_id}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a storage key to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers.
        We hash the key to create a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist with proper schemas."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name in existing:
                continue

            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=PLACEHOLDER_VECTOR_DIM,
                    distance=models.Distance.DOT,
                ),
            )
            await self._create_indexes(kind, collection_name)

    async def _create_indexes(self, kind: str, collection_name: str) -> None:
        """Create payload indexes for efficient filtering."""
        for field_name, schema in _PAYLOAD_INDEXES.get(kind, {}).items():
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=schema,
            )

    def _record_to_payload(self, record: BaseModel) -> dict[str, Any]:
        """Convert a record model to Qdrant payload.

        Delivery timestamps are duplicated as epoch floats: next_retry_ts
        for range filtering and created_ts for newest-first ordering.
        """
        data = record.model_dump(mode="json")

        if isinstance(record, DeliveryRecord):
            data["created_ts"] = record.created_at.timestamp()
            if record.next_retry_at is not None:
                data["next_retry_ts"] = record.next_retry_at.timestamp()

        return data

    def _payload_to_record(self, payload: dict[str, Any], record_class: type[RecordT]) -> RecordT:
        """Convert Qdrant payload back to a record model."""
        data = dict(payload)
        for derived in _DERIVED_FIELDS:
            data.pop(derived, None)
        return record_class.model_validate(data)
