from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["system"])


def _probe_database(client) -> bool:
    try:
        client.table("alerts").select("id").limit(1).execute()
        return True
    except Exception:
        return False


@router.get("/health")
async def health(request: Request):
    settings = request.app.state.settings
    client = getattr(request.app.state, "supabase", None)
    db_ok = await asyncio.to_thread(_probe_database, client) if client is not None else False
    return {
        "ok": True,
        "status": "ok",
        "app": settings.app_name,
        "environment": settings.environment,
        "dependencies": {
            "database": "ok" if db_ok else "degraded",
            "market_data": "configured" if settings.polygon_api_key else "missing",
            "push": "configured" if settings.expo_push_url else "missing",
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
