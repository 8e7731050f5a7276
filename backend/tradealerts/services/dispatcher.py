from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx
from supabase import Client

from tradealerts.config import Settings
from tradealerts.services.database import to_iso, utc_now
from tradealerts.services.notifications import send_expo_push
from tradealerts.services.queue import (
    DEVICE_LOOKUP_RETRY_DELAY,
    QUEUE_TABLE,
    READY_STATUSES,
    JobStatus,
    push_failure_delay,
)

logger = logging.getLogger(__name__)

PushSender = Callable[[str, str, str, Any], Awaitable[bool]]


class NotificationDispatcher:
    """Drains ready push jobs from the queue, one push per registered device."""

    def __init__(
        self,
        settings: Settings,
        client: Client,
        *,
        push_sender: PushSender | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._client = client
        self._push_sender = push_sender
        self._clock = clock

    def _select_ready_jobs(self, now: datetime) -> list[dict[str, Any]]:
        now_iso = to_iso(now)
        data = (
            self._client.table(QUEUE_TABLE)
            .select("*")
            .in_("status", READY_STATUSES)
            .or_(f"scheduled_at.is.null,scheduled_at.lte.{now_iso}")
            .order("priority", desc=True)
            .order("created_at")
            .limit(self._settings.notify_batch_size)
            .execute()
            .data
        )
        return data if isinstance(data, list) else []

    def _claim(self, job_id: Any, now: datetime) -> bool:
        # Conditional update: only one invocation moves a ready job to processing.
        data = (
            self._client.table(QUEUE_TABLE)
            .update({"status": JobStatus.PROCESSING.value, "locked_at": to_iso(now)})
            .eq("id", job_id)
            .in_("status", READY_STATUSES)
            .execute()
            .data
        )
        return bool(data)

    def _update_job(self, job_id: Any, values: dict[str, Any]) -> None:
        self._client.table(QUEUE_TABLE).update(values).eq("id", job_id).execute()

    def _device_tokens(self, user_id: Any) -> list[str]:
        data = self._client.table("user_devices").select("expo_push_token").eq("user_id", user_id).execute().data
        rows = data if isinstance(data, list) else []
        return [str(row["expo_push_token"]) for row in rows if row.get("expo_push_token")]

    async def _process(self, job: dict[str, Any], sender: PushSender) -> bool:
        job_id = job.get("id")
        attempts = int(job.get("attempts") or 0)

        now = self._clock()
        claimed = await asyncio.to_thread(self._claim, job_id, now)
        if not claimed:
            logger.info("Job %s was claimed by another dispatcher; skipping", job_id)
            return False

        try:
            tokens = await asyncio.to_thread(self._device_tokens, job.get("user_id"))
        except Exception as exc:
            logger.exception("Device lookup failed for job %s", job_id)
            await asyncio.to_thread(
                self._update_job,
                job_id,
                {
                    "status": JobStatus.RETRYING.value,
                    "attempts": attempts + 1,
                    "scheduled_at": to_iso(self._clock() + DEVICE_LOOKUP_RETRY_DELAY),
                    "error": str(exc),
                },
            )
            return False

        if not tokens:
            await asyncio.to_thread(
                self._update_job,
                job_id,
                {"status": JobStatus.FAILED.value, "error": "no devices"},
            )
            return False

        payload = job.get("payload") or {}
        title = payload.get("title") or "Notification"
        body = payload.get("body") or ""
        data = payload.get("data")

        all_ok = True
        for token in tokens:
            ok = await sender(token, title, body, data)
            all_ok = all_ok and ok

        if all_ok:
            await asyncio.to_thread(
                self._update_job,
                job_id,
                {"status": JobStatus.SUCCEEDED.value, "processed_at": to_iso(self._clock()), "error": None},
            )
            return True

        await asyncio.to_thread(
            self._update_job,
            job_id,
            {
                "status": JobStatus.RETRYING.value,
                "attempts": attempts + 1,
                "scheduled_at": to_iso(self._clock() + push_failure_delay(attempts)),
                "error": "push failed",
            },
        )
        return False

    async def run(self, reason: str | None = None) -> dict[str, Any]:
        jobs = await asyncio.to_thread(self._select_ready_jobs, self._clock())
        if reason:
            logger.info("Dispatching %d jobs (reason: %s)", len(jobs), reason)

        sent = 0
        async with httpx.AsyncClient(timeout=self._settings.http_timeout_seconds) as http:

            async def expo_sender(to: str, title: str, body: str, data: Any) -> bool:
                return await send_expo_push(self._settings, to, title, body, data, client=http)

            sender = self._push_sender or expo_sender
            for job in jobs:
                try:
                    if await self._process(job, sender):
                        sent += 1
                except Exception:
                    logger.exception("Failed to update notification job %s", job.get("id"))

        logger.info("Processed %d notification jobs, sent %d", len(jobs), sent)
        return {"ok": True, "processed": len(jobs), "sent": sent}
