from __future__ import annotations

import os
from typing import Any

import modal

app = modal.App("tradealerts-scheduler")

scheduler_image = modal.Image.debian_slim(python_version="3.11").pip_install(
    "httpx==0.28.1",
)


def _invoke(function_name: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    import httpx

    backend_url = os.environ.get("BACKEND_URL", "http://localhost:8000").rstrip("/")
    token = os.environ.get("FUNCTION_SECRET") or os.environ.get("SUPABASE_SERVICE_KEY", "")
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        with httpx.Client(timeout=60.0) as client:
            response = client.post(f"{backend_url}/functions/v1/{function_name}", headers=headers, json=payload or {})
    except httpx.HTTPError as exc:
        print(f"[modal_cron] {function_name} request failed: {exc}")
        return {"ok": False, "error": str(exc)}

    try:
        body = response.json()
    except ValueError:
        body = {"raw": response.text[:500]}
    if response.status_code >= 300:
        print(f"[modal_cron] {function_name} returned {response.status_code}: {body}")
    return {"ok": response.status_code < 300, "status_code": response.status_code, "body": body}


@app.function(
    schedule=modal.Period(minutes=1),
    image=scheduler_image,
    secrets=[modal.Secret.from_name("tradealerts-secrets")],
    timeout=120,
)
def evaluate_alerts() -> dict[str, Any]:
    return _invoke("evaluate-alerts")


@app.function(
    schedule=modal.Period(minutes=1),
    image=scheduler_image,
    secrets=[modal.Secret.from_name("tradealerts-secrets")],
    timeout=120,
)
def drain_notifications() -> dict[str, Any]:
    # Picks up retrying jobs whose backoff has elapsed when no alert fired.
    return _invoke("notify", {"reason": "scheduled"})


@app.local_entrypoint()
def main():
    print(evaluate_alerts.local())
    print(drain_notifications.local())
