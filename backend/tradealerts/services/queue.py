from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from tradealerts.services.database import to_iso

QUEUE_TABLE = "notifications_queue"
DEFAULT_PRIORITY = 5
MAX_BACKOFF_MINUTES = 5
DEVICE_LOOKUP_RETRY_DELAY = timedelta(seconds=60)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


READY_STATUSES = [JobStatus.QUEUED.value, JobStatus.RETRYING.value]


def new_push_job(user_id: str, payload: dict[str, Any], now: datetime, *, priority: int = DEFAULT_PRIORITY) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "channel": "push",
        "payload": payload,
        "status": JobStatus.QUEUED.value,
        "attempts": 0,
        "scheduled_at": to_iso(now),
        "priority": priority,
    }


def push_failure_delay(attempts: int) -> timedelta:
    """Delay before the next try after a failed send; `attempts` is the count before this failure."""
    return timedelta(minutes=min(MAX_BACKOFF_MINUTES, attempts + 1))


def stock_deep_link(scheme: str, symbol: str) -> str:
    return f"{scheme}/stock/{symbol}"
