"""Storage backend for PingLater.

Persists destinations and delivery records in Qdrant with per-user
isolation.

Example:
    ```python
    from pinglater.storage import WebhookStorage

    async with WebhookStorage() as storage:
        await storage.store_destination(destination)
        records = await storage.get_deliveries(destination.id, destination.user_id)
    ```
"""

from .base import COLLECTION_NAMES
from .client import WebhookStorage
from .retry import qdrant_retry

__all__ = [
    "WebhookStorage",
    "COLLECTION_NAMES",
    "qdrant_retry",
]
