"""PingLater: webhooks for your chat account.

Turns chat events into filtered, HMAC-signed HTTP callbacks with a fixed
retry schedule and a per-destination delivery history.

Quick Start:
    from pinglater.models import DestinationCreate, MessageData
    from pinglater.service import WebhookService

    async with WebhookService.create() as service:
        await service.register_destination(
            "user_123",
            DestinationCreate(
                url="https://example.com/hooks/chat",
                event_types=["message_received"],
                secret="s3cret",
            ),
        )

        # Fan out to every matching destination
        service.trigger_message_received(
            "user_123",
            MessageData(sender_id="12345678900@s.whatsapp.net", content="hi"),
        )

Event Types:
    - message_received: A chat message arrived
    - message_sent: A chat message was sent
    - connected / disconnected: The chat client changed state
    - test: On-demand test delivery
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    PingLaterError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryRecord,
    DeliveryStats,
    Destination,
    DestinationCreate,
    DestinationUpdate,
    MessageData,
    WebhookPayload,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "PingLaterError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConfigurationError",
    "AuthenticationError",
    "AuthorizationError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "Destination",
    "DestinationCreate",
    "DestinationUpdate",
    "DeliveryRecord",
    "DeliveryStats",
    "MessageData",
    "WebhookPayload",
]
