from __future__ import annotations

import hashlib
import os
import time
from typing import Any
from uuid import UUID

from fastapi import Request

_TOKEN_CACHE_TTL_SECONDS = 300.0
_TOKEN_CACHE_MAX_ENTRIES = 2048
_token_user_cache: dict[str, tuple[float, str | None]] = {}


def _is_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        UUID(value)
        return True
    except ValueError:
        return False


def _lookup_token_user(client: Any, token: str) -> str | None:
    try:
        response = client.auth.get_user(token)
    except Exception:
        return None

    user_obj = getattr(response, "user", None) if response is not None else None
    if user_obj is None and isinstance(response, dict):
        user_obj = response.get("user")
    candidate = getattr(user_obj, "id", None) if user_obj is not None else None
    if candidate is None and isinstance(user_obj, dict):
        candidate = user_obj.get("id")
    return candidate if isinstance(candidate, str) and _is_uuid(candidate) else None


def _cached_token_user(client: Any, token: str) -> str | None:
    key = hashlib.sha256(token.encode("utf-8")).hexdigest()
    now = time.time()
    cached = _token_user_cache.get(key)
    if cached and (now - cached[0]) < _TOKEN_CACHE_TTL_SECONDS:
        return cached[1]

    user_id = _lookup_token_user(client, token) if client is not None else None

    if len(_token_user_cache) >= _TOKEN_CACHE_MAX_ENTRIES:
        oldest_keys = sorted(_token_user_cache.items(), key=lambda item: item[1][0])[:256]
        for stale_key, _ in oldest_keys:
            _token_user_cache.pop(stale_key, None)
    _token_user_cache[key] = (now, user_id)
    return user_id


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization") or ""
    return auth_header.removeprefix("Bearer ").removeprefix("bearer ").strip()


def get_user_id_from_request(request: Request) -> str | None:
    token = bearer_token(request)
    if token:
        client = getattr(request.app.state, "supabase", None)
        token_user = _cached_token_user(client, token)
        if _is_uuid(token_user):
            return token_user

    # Header identity is a local development convenience only.
    if os.getenv("ENVIRONMENT", "development").strip().lower() != "production":
        header_user = request.headers.get("x-user-id")
        if _is_uuid(header_user):
            return header_user

    return None
