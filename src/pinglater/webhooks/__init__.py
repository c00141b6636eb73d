"""Webhook delivery system for PingLater.

Provides filtered, HMAC-signed delivery with a fixed retry schedule.

Example:
    ```python
    from pinglater.webhooks import RetryScheduler, WebhookDispatcher

    dispatcher = WebhookDispatcher(storage)
    scheduler = RetryScheduler(storage, dispatcher)
    scheduler.start()

    dispatcher.trigger("user_123", "message_received", message)
    ```
"""

from .backoff import MAX_RETRIES, RETRY_DELAYS, backoff_delay, schedule_next_attempt
from .delivery import DEFAULT_USER_AGENT, DeliveryResult, WebhookDispatcher
from .filters import matches_filters, normalize_phone, phone_matches
from .scheduler import RetryScheduler
from .signature import SIGNATURE_HEADER, sign_payload, signature_header, verify_signature

__all__ = [
    # Signatures
    "SIGNATURE_HEADER",
    "sign_payload",
    "signature_header",
    "verify_signature",
    # Filters
    "matches_filters",
    "normalize_phone",
    "phone_matches",
    # Retry schedule
    "MAX_RETRIES",
    "RETRY_DELAYS",
    "backoff_delay",
    "schedule_next_attempt",
    # Delivery
    "DEFAULT_USER_AGENT",
    "DeliveryResult",
    "WebhookDispatcher",
    "RetryScheduler",
]
