"""Webhook models for PingLater.

Destination Types:
    - Destination: A registered webhook callback with its filters
    - DestinationCreate: Fields accepted at registration
    - DestinationUpdate: Partial update that tells omitted from supplied fields

Delivery Types:
    - DeliveryRecord: Ledger entry for one delivery and its retry state
    - DeliveryStats: Aggregated outcomes for a destination
    - WebhookPayload: The signed JSON envelope sent to a destination
    - MessageData: Chat message data carried by message events
"""

from .base import generate_id, utcnow
from .webhook import (
    CONNECTION_EVENT_TYPES,
    FILTER_LIST_FIELDS,
    NON_NULLABLE_UPDATE_FIELDS,
    SUBSCRIBABLE_EVENT_TYPES,
    TEST_EVENT,
    TEST_MESSAGE,
    ChatType,
    DeliveryRecord,
    DeliveryState,
    DeliveryStats,
    Destination,
    DestinationCreate,
    DestinationUpdate,
    EventType,
    MessageData,
    PhoneMatchType,
    WebhookPayload,
)

__all__ = [
    # Helpers
    "generate_id",
    "utcnow",
    # Event types
    "EventType",
    "SUBSCRIBABLE_EVENT_TYPES",
    "CONNECTION_EVENT_TYPES",
    "TEST_EVENT",
    "TEST_MESSAGE",
    # Destinations
    "ChatType",
    "PhoneMatchType",
    "Destination",
    "DestinationCreate",
    "DestinationUpdate",
    "FILTER_LIST_FIELDS",
    "NON_NULLABLE_UPDATE_FIELDS",
    # Deliveries
    "DeliveryRecord",
    "DeliveryState",
    "DeliveryStats",
    "MessageData",
    "WebhookPayload",
]
