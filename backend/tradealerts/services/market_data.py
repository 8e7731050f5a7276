from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Iterable
from urllib.parse import quote

import httpx

from tradealerts.config import Settings

logger = logging.getLogger(__name__)


def _safe_price(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return parsed if math.isfinite(parsed) else None


async def fetch_last_trade_price(settings: Settings, client: httpx.AsyncClient, symbol: str) -> float | None:
    """Last trade price from Polygon; any failure is reported as no price."""
    if not settings.polygon_api_key:
        logger.warning("POLYGON_API_KEY is not set; skipping price for %s", symbol)
        return None

    url = f"{settings.polygon_api_url.rstrip('/')}/v2/last/trade/{quote(symbol, safe='')}"
    try:
        response = await client.get(
            url,
            params={"apiKey": settings.polygon_api_key},
            headers={"accept": "application/json"},
        )
        if response.status_code >= 300:
            logger.warning("Polygon last trade for %s returned %s", symbol, response.status_code)
            return None
        payload = response.json()
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        logger.warning("Polygon last trade for %s failed: %s: %s", symbol, type(exc).__name__, exc)
        return None

    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, dict):
        return None
    return _safe_price(results.get("p"))


async def fetch_prices(settings: Settings, symbols: Iterable[str], *, transport: httpx.AsyncBaseTransport | None = None) -> dict[str, float]:
    unique = list(dict.fromkeys(symbols))
    if not unique:
        return {}

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds, transport=transport) as client:
        prices = await asyncio.gather(*(fetch_last_trade_price(settings, client, symbol) for symbol in unique))

    return {symbol: price for symbol, price in zip(unique, prices) if price is not None}
