from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from tradealerts.services.database import parse_timestamp


class AlertCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"


class RepeatPolicy(str, Enum):
    ONCE = "once"
    ONCE_PER_MIN = "once_per_min"
    ONCE_PER_DAY = "once_per_day"
    UNLIMITED = "unlimited"


REPEAT_INTERVALS: dict[str, timedelta] = {
    RepeatPolicy.ONCE_PER_MIN.value: timedelta(seconds=60),
    RepeatPolicy.ONCE_PER_DAY.value: timedelta(seconds=86_400),
}


def should_trigger(condition: str, last_price: float | None, current: float, level: float) -> bool:
    if condition == AlertCondition.ABOVE.value:
        return current > level
    if condition == AlertCondition.BELOW.value:
        return current < level
    if condition == AlertCondition.CROSSES_ABOVE.value:
        return last_price is not None and last_price <= level and current > level
    if condition == AlertCondition.CROSSES_BELOW.value:
        return last_price is not None and last_price >= level and current < level
    return False


def repeat_interval(repeat: str | None) -> timedelta | None:
    """Minimum spacing between two firings; None means no throttle."""
    return REPEAT_INTERVALS.get(str(repeat or "").strip().lower())


def is_throttled(repeat: str | None, last_notified_at: Any, now: datetime) -> bool:
    interval = repeat_interval(repeat)
    if interval is None:
        return False
    last = parse_timestamp(last_notified_at)
    if last is None:
        return False
    return now - last < interval


def deactivates_on_fire(repeat: str | None) -> bool:
    return str(repeat or "").strip().lower() == RepeatPolicy.ONCE.value


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return None


def alert_level(alert: dict[str, Any]) -> float | None:
    return _as_float(alert.get("price"))


def alert_last_price(alert: dict[str, Any]) -> float | None:
    return _as_float(alert.get("last_price"))


def format_alert_message(alert: dict[str, Any], current: float) -> tuple[str, str]:
    symbol = str(alert.get("symbol") or "")
    condition = str(alert.get("condition") or "").replace("_", " ", 1)
    level = alert_level(alert) or 0.0
    title = f"{symbol} Alert"
    body = f"{condition} {symbol} at ${level:.2f} (now ${current:.2f})"
    return title, body
