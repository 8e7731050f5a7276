from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from supabase import Client

from tradealerts.config import Settings
from tradealerts.services.database import utc_now
from tradealerts.services.queue import QUEUE_TABLE, new_push_job, stock_deep_link

logger = logging.getLogger(__name__)

MAX_LEVELS = 10
_NUMERIC_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


class PublishError(ValueError):
    """Signal payload rejected before anything was written."""


def _coerce_level(value: Any) -> float | None:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        try:
            parsed = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if not _NUMERIC_RE.match(text):
            return None
        parsed = float(text)
    else:
        return None
    return parsed if math.isfinite(parsed) else None


def sanitize_levels(levels: Any, max_levels: int = MAX_LEVELS) -> list[float]:
    """Coerce to numbers, drop what is not finite, keep at most `max_levels`."""
    if not isinstance(levels, list):
        return []
    numbers = [level for level in (_coerce_level(item) for item in levels) if level is not None]
    return numbers[:max_levels]


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


@dataclass
class SignalPayload:
    provider_user_id: str
    group_id: str
    symbol: str
    timeframe: str
    entries: list[float] = field(default_factory=list)
    exits: list[float] = field(default_factory=list)
    tps: list[float] = field(default_factory=list)
    provider_name: str | None = None
    group_name: str | None = None
    side: str | None = None
    confidence: float | None = None
    rationale: str | None = None

    @classmethod
    def from_request(cls, raw: Any, max_levels: int = MAX_LEVELS) -> "SignalPayload":
        if not isinstance(raw, dict):
            raise PublishError("Invalid payload")

        provider = _text(raw.get("providerUserId"))
        group = _text(raw.get("groupId"))
        if not provider or not group:
            raise PublishError("Missing provider or group")

        symbol = _text(raw.get("symbol"))
        timeframe = _text(raw.get("timeframe"))
        if not symbol or not timeframe:
            raise PublishError("Missing symbol or timeframe")

        confidence = raw.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = None

        return cls(
            provider_user_id=provider,
            group_id=group,
            symbol=symbol,
            timeframe=timeframe,
            entries=sanitize_levels(raw.get("entries"), max_levels),
            exits=sanitize_levels(raw.get("exits"), max_levels),
            tps=sanitize_levels(raw.get("tps"), max_levels),
            provider_name=raw.get("providerName") or None,
            group_name=raw.get("groupName") or None,
            side=raw.get("side"),
            confidence=confidence,
            rationale=raw.get("rationale") or None,
        )


class SignalPublisher:
    """Fans a provider's trade idea out to every member of a strategy group."""

    def __init__(
        self,
        settings: Settings,
        client: Client,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._client = client
        self._clock = clock

    def _get_group(self, group_id: str) -> dict[str, Any] | None:
        data = (
            self._client.table("strategy_groups")
            .select("id, name, owner_user_id")
            .eq("id", group_id)
            .limit(1)
            .execute()
            .data
        )
        return data[0] if data else None

    def _get_members(self, group_id: str) -> list[dict[str, Any]]:
        data = self._client.table("strategy_group_members").select("user_id, role").eq("group_id", group_id).execute().data
        return data if isinstance(data, list) else []

    def _signal_row(self, recipient: str, signal: SignalPayload, group_name: str | None) -> dict[str, Any]:
        return {
            "user_id": recipient,
            "symbol": signal.symbol,
            "kind": "entry",
            "action": "sell" if signal.side == "sell" else "buy",
            "timeframe": signal.timeframe,
            "confidence": signal.confidence,
            "entry_price": signal.entries[0] if signal.entries else None,
            "stop_loss": signal.exits[0] if signal.exits else None,
            "targets": signal.tps or None,
            "rationale": signal.rationale,
            "metadata": {
                "group_id": signal.group_id,
                "group_name": group_name,
                "provider_user_id": signal.provider_user_id,
                "provider_name": signal.provider_name,
                "entries": signal.entries,
                "exits": signal.exits,
                "tps": signal.tps,
            },
        }

    def _notification_payload(self, signal: SignalPayload, group_name: str | None) -> dict[str, Any]:
        return {
            "title": f"{group_name or 'Strategy'} shared {signal.symbol}",
            "body": f"New {signal.timeframe} update. Tap to view levels",
            "data": {
                "screen": "ChartFullScreen",
                "symbol": signal.symbol,
                "timeframe": signal.timeframe,
                "entries": signal.entries,
                "exits": signal.exits,
                "tps": signal.tps,
                "groupId": signal.group_id,
                "url": stock_deep_link(self._settings.deep_link_scheme, signal.symbol),
            },
        }

    def _deliver(self, recipient: str, signal: SignalPayload, group_name: str | None) -> None:
        self._client.table("trade_signals").insert(self._signal_row(recipient, signal, group_name)).execute()
        job = new_push_job(recipient, self._notification_payload(signal, group_name), self._clock())
        self._client.table(QUEUE_TABLE).insert(job).execute()

    async def publish(self, raw: Any) -> dict[str, Any]:
        signal = SignalPayload.from_request(raw, self._settings.signal_max_levels)

        group = await asyncio.to_thread(self._get_group, signal.group_id)
        if not group:
            raise PublishError("Group not found")

        members = await asyncio.to_thread(self._get_members, signal.group_id)
        if not any(str(member.get("user_id")) == signal.provider_user_id for member in members):
            raise PublishError("Provider is not a member of this group")

        recipients = list(dict.fromkeys(str(member["user_id"]) for member in members if member.get("user_id")))
        group_name = signal.group_name or group.get("name") or None

        await asyncio.gather(
            *(asyncio.to_thread(self._deliver, recipient, signal, group_name) for recipient in recipients)
        )
        logger.info(
            "Published %s %s signal from %s to %d members of %s",
            signal.symbol,
            signal.timeframe,
            signal.provider_user_id,
            len(recipients),
            signal.group_id,
        )
        return {"ok": True, "recipients": len(recipients)}
