from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

from supabase import Client

from tradealerts.config import Settings
from tradealerts.services.alert_rules import (
    alert_last_price,
    alert_level,
    deactivates_on_fire,
    format_alert_message,
    is_throttled,
    should_trigger,
)
from tradealerts.services.database import to_iso, utc_now
from tradealerts.services.market_data import fetch_prices
from tradealerts.services.notifications import trigger_function
from tradealerts.services.queue import QUEUE_TABLE, new_push_job, stock_deep_link

logger = logging.getLogger(__name__)

PriceFetcher = Callable[[Iterable[str]], Awaitable[dict[str, float]]]
DispatchTrigger = Callable[[], Awaitable[bool]]


class AlertEvaluator:
    """Polls prices for active alerts, fires the ones whose condition holds and queues pushes."""

    def __init__(
        self,
        settings: Settings,
        client: Client,
        *,
        price_fetcher: PriceFetcher | None = None,
        dispatch_trigger: DispatchTrigger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._client = client
        self._price_fetcher = price_fetcher or (lambda symbols: fetch_prices(settings, symbols))
        self._dispatch_trigger = dispatch_trigger or (
            lambda: trigger_function(settings, "notify", {"reason": "alerts-fired"})
        )
        self._clock = clock

    def _load_active_alerts(self) -> list[dict[str, Any]]:
        data = self._client.table("alerts").select("*").eq("is_active", True).execute().data
        return data if isinstance(data, list) else []

    def _update_alert(self, alert_id: Any, values: dict[str, Any]) -> None:
        self._client.table("alerts").update(values).eq("id", alert_id).execute()

    def _fire(self, alert: dict[str, Any], current: float, now: datetime) -> None:
        symbol = str(alert["symbol"])
        now_iso = to_iso(now)

        self._client.table("alert_events").insert(
            {
                "user_id": alert.get("user_id"),
                "alert_id": alert.get("id"),
                "symbol": symbol,
                "price": current,
                "condition": alert.get("condition"),
                "fired_at": now_iso,
            }
        ).execute()

        values: dict[str, Any] = {"triggered_at": now_iso, "last_notified_at": now_iso}
        if deactivates_on_fire(alert.get("repeat")):
            values["is_active"] = False
        self._update_alert(alert["id"], values)

        title, body = format_alert_message(alert, current)
        payload = {
            "title": title,
            "body": body,
            "data": {
                "symbol": symbol,
                "condition": alert.get("condition"),
                "price": current,
                "alert_id": alert.get("id"),
                "url": stock_deep_link(self._settings.deep_link_scheme, symbol),
            },
        }
        self._client.table(QUEUE_TABLE).insert(new_push_job(alert.get("user_id"), payload, now)).execute()

    def _evaluate(self, alerts: list[dict[str, Any]], prices: dict[str, float]) -> int:
        fired = 0
        for alert in alerts:
            current = prices.get(str(alert.get("symbol")))
            if current is None:
                continue

            previous = alert_last_price(alert)
            level = alert_level(alert)
            now = self._clock()
            try:
                self._update_alert(alert["id"], {"last_price": current})

                if level is None or not should_trigger(str(alert.get("condition")), previous, current, level):
                    continue
                if is_throttled(alert.get("repeat"), alert.get("last_notified_at"), now):
                    logger.debug("Alert %s throttled by repeat policy %s", alert.get("id"), alert.get("repeat"))
                    continue

                self._fire(alert, current, now)
                fired += 1
            except Exception:
                logger.exception("Failed to evaluate alert %s for %s", alert.get("id"), alert.get("symbol"))
        return fired

    async def run(self) -> dict[str, Any]:
        alerts = await asyncio.to_thread(self._load_active_alerts)
        symbols = list(dict.fromkeys(str(alert["symbol"]) for alert in alerts if alert.get("symbol")))

        prices = await self._price_fetcher(symbols) if symbols else {}
        missing = [symbol for symbol in symbols if symbol not in prices]
        if missing:
            logger.warning("No price this cycle for %s", ", ".join(missing))

        fired = await asyncio.to_thread(self._evaluate, alerts, prices)

        try:
            await self._dispatch_trigger()
        except Exception as exc:
            logger.warning("Notify trigger after evaluation failed: %s", exc)

        logger.info("Evaluated %d alerts across %d symbols, fired %d", len(alerts), len(symbols), fired)
        return {"ok": True, "symbols": len(symbols), "fired": fired}
