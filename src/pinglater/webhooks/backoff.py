"""Fixed retry schedule for failed deliveries."""

from __future__ import annotations

from datetime import datetime, timedelta

from pinglater.models import DeliveryRecord

# Delay before re-attempt i: 1 min, 5 min, 15 min, 30 min, 60 min
RETRY_DELAYS: tuple[int, ...] = (60, 300, 900, 1800, 3600)

MAX_RETRIES = 5


def backoff_delay(attempt_index: int) -> timedelta:
    """Wait before the re-attempt following attempt_index.

    Indexes past the end of the table stay at the last (longest) delay.
    """
    index = min(max(attempt_index, 0), len(RETRY_DELAYS) - 1)
    return timedelta(seconds=RETRY_DELAYS[index])


def schedule_next_attempt(
    record: DeliveryRecord,
    now: datetime,
    max_retries: int = MAX_RETRIES,
) -> DeliveryRecord:
    """Set next_retry_at on a record after an attempt.

    Successful records and records that used up their retries get no
    next attempt.
    """
    if record.success or record.retry_count >= max_retries:
        record.next_retry_at = None
    else:
        record.next_retry_at = now + backoff_delay(record.retry_count)
    return record
