from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tradealerts.config import get_settings
from tradealerts.routers import alerts, functions, system
from tradealerts.services.database import get_supabase
from tradealerts.services.dispatcher import NotificationDispatcher
from tradealerts.services.evaluator import AlertEvaluator
from tradealerts.services.publisher import SignalPublisher
from tradealerts.services.repository import AlertsRepository

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    client = get_supabase()

    app.state.settings = settings
    app.state.supabase = client
    if client is None:
        logger.warning("Supabase is not configured; function and CRUD endpoints will return 503.")
        app.state.evaluator = None
        app.state.dispatcher = None
        app.state.publisher = None
        app.state.repository = None
    else:
        app.state.evaluator = AlertEvaluator(settings, client)
        app.state.dispatcher = NotificationDispatcher(settings, client)
        app.state.publisher = SignalPublisher(settings, client)
        app.state.repository = AlertsRepository(client)

    yield


settings = get_settings()
_configure_logging(settings.log_level)
app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id"],
)

app.include_router(system.router)
app.include_router(functions.router)
app.include_router(alerts.router)


@app.get("/")
async def root():
    return {"app": settings.app_name, "status": "running"}
