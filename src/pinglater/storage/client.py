"""Qdrant storage client for PingLater webhooks.

This module provides the WebhookStorage class that combines the storage
base with the webhook operations mixin.

Example:
    ```python
    from pinglater.storage import WebhookStorage

    async with WebhookStorage(location=":memory:") as storage:
        await storage.store_destination(destination)
        subscribers = await storage.find_active_subscribers("user_123", "message_received")
    ```
"""

from __future__ import annotations

import logging
from typing import Any

from .base import StorageBase
from .webhook import WebhookMixin

logger = logging.getLogger(__name__)


class WebhookStorage(WebhookMixin, StorageBase):
    """Async Qdrant storage for destinations and delivery records.

    Records are isolated per user through their point keys, so a lookup
    with the wrong user_id finds nothing. Uses the async Qdrant client for
    non-blocking I/O.

    This class combines:
    - StorageBase: client lifecycle, collections, key and payload helpers
    - WebhookMixin: destination CRUD, delivery logging, paging and stats

    Attributes:
        client: Async Qdrant client instance.
    """

    async def __aenter__(self) -> WebhookStorage:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def initialize(self) -> None:
        """Connect and create collections."""
        await super().initialize()
        logger.debug("Webhook storage initialized", extra={"prefix": self._prefix})
