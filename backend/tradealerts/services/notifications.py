from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from tradealerts.config import Settings

logger = logging.getLogger(__name__)


def build_push_message(to: str, title: str, body: str, data: Dict[str, Any] | None = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "to": to,
        "title": title,
        "body": body,
        "sound": "default",
    }
    if data is not None:
        message["data"] = data
    return message


async def send_expo_push(
    settings: Settings,
    to: str,
    title: str,
    body: str,
    data: Dict[str, Any] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    headers = {"Content-Type": "application/json"}
    if settings.expo_access_token:
        headers["Authorization"] = f"Bearer {settings.expo_access_token}"

    message = build_push_message(to, title, body, data)
    try:
        if client is not None:
            response = await client.post(settings.expo_push_url, headers=headers, json=message)
        else:
            async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as owned:
                response = await owned.post(settings.expo_push_url, headers=headers, json=message)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("Expo push to %s failed: %s: %s", to, type(exc).__name__, exc)
        return False

    if response.status_code >= 300:
        logger.warning("Expo push to %s returned %s: %s", to, response.status_code, response.text[:200])
        return False
    return True


async def trigger_function(settings: Settings, name: str, payload: Dict[str, Any] | None = None) -> bool:
    """Best-effort POST to another batch function; used to shorten alert-to-push latency."""
    if not settings.functions_base_url:
        return False

    headers = {"Content-Type": "application/json"}
    if settings.service_token:
        headers["Authorization"] = f"Bearer {settings.service_token}"

    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            response = await client.post(
                f"{settings.functions_base_url}/{name}",
                headers=headers,
                json=payload or {},
            )
            return response.status_code < 300
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("Triggering %s failed: %s: %s", name, type(exc).__name__, exc)
        return False
