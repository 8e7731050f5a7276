from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from tradealerts.schemas import EvaluateResponse, FunctionError, NotifyResponse, PublishResponse
from tradealerts.services.publisher import PublishError
from tradealerts.services.user_context import bearer_token, get_user_id_from_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["functions"])


def _has_service_token(request: Request) -> bool:
    expected = request.app.state.settings.service_token
    if not expected:
        return False
    return hmac.compare_digest(bearer_token(request), expected)


def _require_service_token(request: Request) -> None:
    if not _has_service_token(request):
        raise HTTPException(status_code=401, detail="Invalid function token")


def _service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    return service


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": str(exc)})


async def _optional_json(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/evaluate-alerts", response_model=EvaluateResponse, responses={500: {"model": FunctionError}})
async def evaluate_alerts(request: Request):
    _require_service_token(request)
    evaluator = _service(request, "evaluator")
    try:
        return await evaluator.run()
    except Exception as exc:
        logger.exception("Alert evaluation failed")
        return _error(500, exc)


@router.post("/notify", response_model=NotifyResponse, responses={500: {"model": FunctionError}})
async def notify(request: Request):
    _require_service_token(request)
    dispatcher = _service(request, "dispatcher")
    body = await _optional_json(request)
    try:
        return await dispatcher.run(reason=body.get("reason"))
    except Exception as exc:
        logger.exception("Notification dispatch failed")
        return _error(500, exc)


@router.post("/publish-signal", response_model=PublishResponse, responses={400: {"model": FunctionError}})
async def publish_signal(request: Request):
    publisher = _service(request, "publisher")
    try:
        payload = await request.json()
    except ValueError as exc:
        return _error(400, exc)

    if not _has_service_token(request):
        # App users may only publish as themselves.
        user_id = get_user_id_from_request(request)
        if not user_id:
            raise HTTPException(status_code=401, detail="Authentication required")
        provider = payload.get("providerUserId") if isinstance(payload, dict) else None
        if str(provider or "") != user_id:
            raise HTTPException(status_code=403, detail="Cannot publish on behalf of another user")

    try:
        return await publisher.publish(payload)
    except PublishError as exc:
        logger.info("Rejected signal payload: %s", exc)
        return _error(400, exc)
    except Exception as exc:
        logger.exception("Signal publish failed")
        return _error(400, exc)
