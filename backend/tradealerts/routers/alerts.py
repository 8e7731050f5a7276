from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Request

from tradealerts.schemas import (
    AlertCreateRequest,
    AlertPatchRequest,
    DeviceRegisterRequest,
    StrategyGroupCreateRequest,
)
from tradealerts.services.repository import AlertsRepository
from tradealerts.services.user_context import get_user_id_from_request

router = APIRouter(tags=["alerts"])


def _require_user_id(request: Request) -> str:
    resolved = get_user_id_from_request(request)
    if not resolved:
        raise HTTPException(status_code=401, detail="Authentication required")
    return resolved


def _repo(request: Request) -> AlertsRepository:
    repo = getattr(request.app.state, "repository", None)
    if repo is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    return repo


@router.get("/alerts")
async def list_alerts(request: Request, symbol: str | None = None):
    user_id = _require_user_id(request)
    alerts = await asyncio.to_thread(_repo(request).list_alerts, user_id, symbol)
    return {"alerts": alerts}


@router.post("/alerts", status_code=201)
async def create_alert(request: Request, body: AlertCreateRequest):
    user_id = _require_user_id(request)
    alert = await asyncio.to_thread(
        lambda: _repo(request).create_alert(
            user_id,
            symbol=body.symbol,
            price=body.price,
            condition=body.condition.value,
            message=body.message,
            repeat=body.repeat.value,
            is_active=body.is_active,
        )
    )
    return alert


@router.patch("/alerts/{alert_id}")
async def update_alert(request: Request, alert_id: str, body: AlertPatchRequest):
    user_id = _require_user_id(request)
    updates = body.model_dump(mode="json", exclude_none=True)
    alert = await asyncio.to_thread(_repo(request).update_alert, user_id, alert_id, updates)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@router.delete("/alerts/{alert_id}")
async def delete_alert(request: Request, alert_id: str):
    user_id = _require_user_id(request)
    deleted = await asyncio.to_thread(_repo(request).delete_alert, user_id, alert_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"ok": True, "id": alert_id}


@router.get("/alerts/events")
async def list_alert_events(request: Request, limit: int = 50):
    user_id = _require_user_id(request)
    events = await asyncio.to_thread(_repo(request).list_alert_events, user_id, max(1, min(limit, 200)))
    return {"events": events}


@router.post("/devices", status_code=201)
async def register_device(request: Request, body: DeviceRegisterRequest):
    user_id = _require_user_id(request)
    device = await asyncio.to_thread(
        lambda: _repo(request).register_device(
            user_id,
            body.expo_push_token,
            platform=body.platform,
            app_version=body.app_version,
        )
    )
    return device


@router.get("/groups")
async def list_groups(request: Request):
    user_id = _require_user_id(request)
    groups = await asyncio.to_thread(_repo(request).list_groups, user_id)
    return {"groups": groups}


@router.post("/groups", status_code=201)
async def create_group(request: Request, body: StrategyGroupCreateRequest):
    user_id = _require_user_id(request)
    return await asyncio.to_thread(_repo(request).create_group, user_id, body.name, body.description)


@router.post("/groups/{group_id}/members", status_code=201)
async def join_group(request: Request, group_id: str):
    user_id = _require_user_id(request)
    repo = _repo(request)
    group = await asyncio.to_thread(repo.get_group, group_id)
    if group is None:
        raise HTTPException(status_code=404, detail="Strategy group not found")
    return await asyncio.to_thread(repo.subscribe_to_group, user_id, group_id)


@router.get("/signals")
async def list_signals(request: Request, symbol: str | None = None, limit: int = 50):
    user_id = _require_user_id(request)
    signals = await asyncio.to_thread(_repo(request).list_signals, user_id, symbol, max(1, min(limit, 200)))
    return {"signals": signals}
