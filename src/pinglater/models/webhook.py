"""Webhook models: destinations, delivery records and wire payloads.

A destination is a user's registered callback. Every delivery attempt is
recorded as a DeliveryRecord, which also carries the retry state used by
the background scheduler.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

from .base import generate_id, utcnow

EventType = Literal[
    "message_received",
    "message_sent",
    "connected",
    "disconnected",
    "test",
]

# Event types a destination can subscribe to, with descriptions for the API
SUBSCRIBABLE_EVENT_TYPES: dict[str, str] = {
    "message_received": "Triggered when a new chat message is received",
    "message_sent": "Triggered when a message is sent",
    "connected": "Triggered when the chat client connects",
    "disconnected": "Triggered when the chat client disconnects",
}

# Event types whose data is a status marker rather than a message
CONNECTION_EVENT_TYPES: frozenset[str] = frozenset({"connected", "disconnected"})

ChatType = Literal["all", "individual", "group"]
PhoneMatchType = Literal["whitelist", "blacklist"]
DeliveryState = Literal["pending_retry", "exhausted", "resolved"]

TEST_EVENT: EventType = "test"
TEST_MESSAGE = "This is a test webhook from PingLater"

# Filter lists a partial update may clear, and fields it may not null
FILTER_LIST_FIELDS: frozenset[str] = frozenset(
    {"filter_phone_numbers", "filter_group_jids", "filter_group_names"}
)
NON_NULLABLE_UPDATE_FIELDS: frozenset[str] = frozenset(
    {"url", "event_types", "active", "filter_chat_type", "filter_phone_match_type"}
)


def _normalize_event_types(value: Any) -> Any:
    """Lower-case, strip and de-duplicate event type tags, keeping order."""
    if not isinstance(value, list):
        return value
    seen: list[str] = []
    for item in value:
        tag = item.strip().lower() if isinstance(item, str) else item
        if tag not in seen:
            seen.append(tag)
    return seen


def _clean_filter_list(value: Any) -> Any:
    if value is None:
        return []
    if not isinstance(value, list):
        return value
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class Destination(BaseModel):
    """A user's webhook registration.

    Filter fields only apply to message events. Each filter is optional
    and all present filters must pass for a message to be delivered.

    Attributes:
        id: Unique identifier for this destination.
        user_id: User who owns this destination.
        url: Scheme-qualified endpoint receiving deliveries.
        secret: Shared secret for HMAC-SHA256 signatures (None means unsigned).
        description: Optional human-readable description.
        event_types: Event types this destination subscribes to.
        active: Inactive destinations are never matched or retried.
        filter_chat_type: Restrict to individual or group chats.
        filter_phone_numbers: Phone numbers for the whitelist/blacklist.
        filter_phone_match_type: How filter_phone_numbers is applied.
        filter_group_jids: Exact group identifiers (case-insensitive).
        filter_group_names: Exact group display names (case-insensitive).
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    user_id: str = Field(min_length=1, description="User who owns this destination")
    url: HttpUrl = Field(description="Endpoint receiving deliveries")
    secret: str | None = Field(default=None, description="Shared secret for signatures")
    description: str | None = Field(default=None, description="Human-readable description")
    event_types: list[EventType] = Field(
        min_length=1,
        description="Event types to subscribe to",
    )
    active: bool = Field(default=True, description="Whether the destination is active")
    filter_chat_type: ChatType = Field(default="all", description="Chat type filter")
    filter_phone_numbers: list[str] = Field(default_factory=list)
    filter_phone_match_type: PhoneMatchType = Field(default="whitelist")
    filter_group_jids: list[str] = Field(default_factory=list)
    filter_group_names: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("event_types", mode="before")
    @classmethod
    def normalize_event_types(cls, value: Any) -> Any:
        return _normalize_event_types(value)

    @field_validator(
        "filter_phone_numbers", "filter_group_jids", "filter_group_names", mode="before"
    )
    @classmethod
    def clean_filter_lists(cls, value: Any) -> Any:
        return _clean_filter_list(value)

    @property
    def is_signed(self) -> bool:
        """Whether deliveries to this destination carry a signature."""
        return bool(self.secret)

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this destination is active and subscribed to event_type."""
        return self.active and event_type.strip().lower() in self.event_types


class DestinationCreate(BaseModel):
    """Fields accepted when registering a destination."""

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl
    secret: str | None = None
    description: str | None = None
    event_types: list[EventType] = Field(min_length=1)
    active: bool = True
    filter_chat_type: ChatType = "all"
    filter_phone_numbers: list[str] = Field(default_factory=list)
    filter_phone_match_type: PhoneMatchType = "whitelist"
    filter_group_jids: list[str] = Field(default_factory=list)
    filter_group_names: list[str] = Field(default_factory=list)

    @field_validator("event_types", mode="before")
    @classmethod
    def normalize_event_types(cls, value: Any) -> Any:
        return _normalize_event_types(value)

    @field_validator(
        "filter_phone_numbers", "filter_group_jids", "filter_group_names", mode="before"
    )
    @classmethod
    def clean_filter_lists(cls, value: Any) -> Any:
        return _clean_filter_list(value)


class DestinationUpdate(BaseModel):
    """Partial update for a destination.

    Only fields present in the request are applied. ``model_fields_set``
    tells an omitted field apart from one explicitly sent, so sending
    ``"filter_group_names": []`` clears that filter while leaving it out
    keeps the stored list.
    """

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl | None = None
    secret: str | None = None
    description: str | None = None
    event_types: list[EventType] | None = None
    active: bool | None = None
    filter_chat_type: ChatType | None = None
    filter_phone_numbers: list[str] | None = None
    filter_phone_match_type: PhoneMatchType | None = None
    filter_group_jids: list[str] | None = None
    filter_group_names: list[str] | None = None

    @field_validator("event_types", mode="before")
    @classmethod
    def normalize_event_types(cls, value: Any) -> Any:
        return _normalize_event_types(value)

    def changes(self) -> dict[str, Any]:
        """Return only the explicitly supplied fields.

        A null filter list is treated as a request to clear it.
        """
        supplied = self.model_dump(mode="json", exclude_unset=True)
        for name in FILTER_LIST_FIELDS & supplied.keys():
            if supplied[name] is None:
                supplied[name] = []
        return supplied


class MessageData(BaseModel):
    """Message event data handed over by the chat client.

    Serialized with the wire keys receivers already consume
    (``from``, ``from_phone``, ...).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender_id: str = Field(default="", alias="from")
    sender_phone: str = Field(default="", alias="from_phone")
    sender_name: str | None = Field(default=None, alias="from_name")
    content: str = ""
    message_id: str = ""
    is_group: bool = False
    group_id: str = ""
    group_name: str | None = None
    timestamp: int = Field(default=0, description="Unix timestamp of the message")

    @property
    def group_jid(self) -> str:
        """Group identifier; for group chats the sender id is the group JID."""
        return self.group_id or self.sender_id

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire aliases, omitting unset optional names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WebhookPayload(BaseModel):
    """Envelope POSTed to a destination.

    Wire format::

        {"webhook_id": "...", "event": "...", "timestamp": "<ISO-8601 UTC>", "data": {...}}
    """

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    event: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        destination_id: str,
        event_type: str,
        data: "MessageData | dict[str, Any] | None" = None,
    ) -> "WebhookPayload":
        """Create the payload for an event.

        Message data is serialized with its wire keys, connection events
        get a status marker and any other mapping is passed through.
        """
        if isinstance(data, MessageData):
            body = data.to_wire()
        elif data is not None:
            body = dict(data)
        elif event_type in CONNECTION_EVENT_TYPES:
            body = {"status": event_type}
        else:
            body = {}
        return cls(webhook_id=destination_id, event=event_type, data=body)

    @classmethod
    def for_test(cls, destination_id: str) -> "WebhookPayload":
        """Create the static payload used by on-demand destination tests."""
        return cls(
            webhook_id=destination_id,
            event=TEST_EVENT,
            data={"test": True, "message": TEST_MESSAGE},
        )

    def to_bytes(self) -> bytes:
        """Serialize to the exact bytes that are signed and sent."""
        return self.model_dump_json().encode("utf-8")


class DeliveryRecord(BaseModel):
    """Ledger entry for one delivery and its retry history.

    The payload is stored as sent and never rebuilt, so retries resend
    the original bytes.

    Attributes:
        id: Unique identifier for this record.
        destination_id: Destination the payload was sent to.
        user_id: Owner of the destination.
        event_type: Event type tag of the payload.
        payload: Serialized JSON body.
        success: Whether the last attempt got a 2xx response.
        response_status: HTTP status of the last attempt (0 if none).
        response_body: Truncated response body of the last attempt.
        error_message: Failure description of the last attempt.
        retry_count: Number of re-attempts made so far.
        next_retry_at: When the scheduler should try again (None when done).
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    destination_id: str
    user_id: str
    event_type: str
    payload: str
    success: bool = False
    response_status: int = Field(default=0, ge=0)
    response_body: str = ""
    error_message: str | None = None
    retry_count: int = Field(default=0, ge=0)
    next_retry_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_resolved_has_no_retry(self) -> "DeliveryRecord":
        if self.success and self.next_retry_at is not None:
            raise ValueError("a successful delivery cannot have next_retry_at")
        return self

    def state(self, max_retries: int = 5) -> DeliveryState:
        """Retry state of this record."""
        if self.success:
            return "resolved"
        if self.retry_count >= max_retries or self.next_retry_at is None:
            return "exhausted"
        return "pending_retry"

    def record_outcome(
        self,
        success: bool,
        status_code: int,
        response_body: str | None,
        error: str | None,
    ) -> "DeliveryRecord":
        """Copy the outcome of an attempt onto this record."""
        self.success = success
        self.response_status = status_code
        self.response_body = response_body or ""
        self.error_message = None if success else error
        self.updated_at = utcnow()
        if success:
            self.next_retry_at = None
        return self


class DeliveryStats(BaseModel):
    """Aggregated delivery outcomes for one destination."""

    model_config = ConfigDict(extra="forbid")

    total_deliveries: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    success_rate: str = "0.00%"
    last_delivery_at: datetime | None = None
    last_delivery_success: bool | None = None

    @staticmethod
    def format_rate(successful: int, total: int) -> str:
        """Format a success percentage with two decimals, 0 when total is 0."""
        rate = successful / total * 100 if total > 0 else 0.0
        return f"{rate:.2f}%"


__all__ = [
    "CONNECTION_EVENT_TYPES",
    "SUBSCRIBABLE_EVENT_TYPES",
    "TEST_EVENT",
    "TEST_MESSAGE",
    "ChatType",
    "DeliveryRecord",
    "DeliveryState",
    "DeliveryStats",
    "Destination",
    "DestinationCreate",
    "DestinationUpdate",
    "EventType",
    "FILTER_LIST_FIELDS",
    "MessageData",
    "NON_NULLABLE_UPDATE_FIELDS",
    "PhoneMatchType",
    "WebhookPayload",
]
