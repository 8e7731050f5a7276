from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from tradealerts.services.evaluator import AlertEvaluator

NOW = datetime(2026, 1, 5, 15, 30, tzinfo=timezone.utc)
USER = "00000000-0000-0000-0000-000000000123"


def _alert(alert_id: str, symbol: str, condition: str, price: float, **extra):
    row = {
        "id": alert_id,
        "user_id": USER,
        "symbol": symbol,
        "condition": condition,
        "price": price,
        "last_price": None,
        "is_active": True,
        "repeat": "unlimited",
        "last_notified_at": None,
        "triggered_at": None,
    }
    row.update(extra)
    return row


def _evaluator(settings, fake_db, prices, trigger=None):
    fetcher = AsyncMock(return_value=prices)
    trigger = trigger or AsyncMock(return_value=True)
    evaluator = AlertEvaluator(settings, fake_db, price_fetcher=fetcher, dispatch_trigger=trigger, clock=lambda: NOW)
    return evaluator, fetcher, trigger


def _row(fake_db, table, row_id):
    return next(row for row in fake_db.rows(table) if row["id"] == row_id)


def test_fires_above_alert_and_enqueues_push(settings, fake_db):
    fake_db.seed("alerts", _alert("a1", "AAPL", "above", 190.0))
    evaluator, fetcher, trigger = _evaluator(settings, fake_db, {"AAPL": 191.5})

    result = asyncio.run(evaluator.run())

    assert result == {"ok": True, "symbols": 1, "fired": 1}
    fetcher.assert_awaited_once_with(["AAPL"])
    trigger.assert_awaited_once()

    alert = _row(fake_db, "alerts", "a1")
    assert alert["last_price"] == 191.5
    assert alert["triggered_at"] == NOW.isoformat()
    assert alert["last_notified_at"] == NOW.isoformat()
    assert alert["is_active"] is True

    [event] = fake_db.rows("alert_events")
    assert event["alert_id"] == "a1"
    assert event["price"] == 191.5
    assert event["condition"] == "above"

    [job] = fake_db.rows("notifications_queue")
    assert job["user_id"] == USER
    assert job["channel"] == "push"
    assert job["status"] == "queued"
    assert job["priority"] == 5
    assert job["attempts"] == 0
    assert job["scheduled_at"] == NOW.isoformat()
    assert job["payload"]["title"] == "AAPL Alert"
    assert job["payload"]["body"] == "above AAPL at $190.00 (now $191.50)"
    assert job["payload"]["data"]["symbol"] == "AAPL"
    assert job["payload"]["data"]["url"] == "app://trading/stock/AAPL"


def test_first_observation_never_fires_crossing_alert(settings, fake_db):
    fake_db.seed("alerts", _alert("a1", "TSLA", "crosses_above", 200.0, last_price=None))
    evaluator, _, _ = _evaluator(settings, fake_db, {"TSLA": 250.0})

    result = asyncio.run(evaluator.run())

    assert result["fired"] == 0
    assert _row(fake_db, "alerts", "a1")["last_price"] == 250.0
    assert fake_db.rows("alert_events") == []
    assert fake_db.rows("notifications_queue") == []


def test_crossing_uses_previous_run_price(settings, fake_db):
    fake_db.seed(
        "alerts",
        _alert("up", "TSLA", "crosses_above", 200.0, last_price=199.0),
        _alert("down", "TSLA", "crosses_below", 210.0, last_price=209.0),
    )
    evaluator, _, _ = _evaluator(settings, fake_db, {"TSLA": 200.5})

    result = asyncio.run(evaluator.run())

    assert result == {"ok": True, "symbols": 1, "fired": 1}
    assert [event["alert_id"] for event in fake_db.rows("alert_events")] == ["up"]


def test_last_price_updated_regardless_of_outcome(settings, fake_db):
    fake_db.seed(
        "alerts",
        _alert("fires", "AAPL", "above", 100.0),
        _alert("quiet", "AAPL", "below", 100.0, last_price=150.0),
        _alert("throttled", "MSFT", "above", 100.0, repeat="once_per_day", last_notified_at=NOW.isoformat()),
        _alert("no_price", "NVDA", "above", 100.0, last_price=90.0),
    )
    evaluator, _, _ = _evaluator(settings, fake_db, {"AAPL": 120.0, "MSFT": 300.0})

    result = asyncio.run(evaluator.run())

    assert result == {"ok": True, "symbols": 3, "fired": 1}
    assert _row(fake_db, "alerts", "fires")["last_price"] == 120.0
    assert _row(fake_db, "alerts", "quiet")["last_price"] == 120.0
    assert _row(fake_db, "alerts", "throttled")["last_price"] == 300.0
    assert _row(fake_db, "alerts", "no_price")["last_price"] == 90.0


@pytest.mark.parametrize(("seconds_ago", "fires"), [(30, False), (61, True)])
def test_once_per_min_throttle(settings, fake_db, seconds_ago, fires):
    last = (NOW - timedelta(seconds=seconds_ago)).isoformat()
    fake_db.seed("alerts", _alert("a1", "AAPL", "above", 100.0, repeat="once_per_min", last_notified_at=last))
    evaluator, _, _ = _evaluator(settings, fake_db, {"AAPL": 101.0})

    result = asyncio.run(evaluator.run())

    assert result["fired"] == (1 if fires else 0)
    alert = _row(fake_db, "alerts", "a1")
    assert alert["last_price"] == 101.0
    assert alert["last_notified_at"] == (NOW.isoformat() if fires else last)
    assert len(fake_db.rows("notifications_queue")) == (1 if fires else 0)


def test_once_policy_deactivates_alert(settings, fake_db):
    fake_db.seed("alerts", _alert("a1", "AAPL", "below", 100.0, repeat="once"))
    evaluator, _, _ = _evaluator(settings, fake_db, {"AAPL": 95.0})

    asyncio.run(evaluator.run())

    assert _row(fake_db, "alerts", "a1")["is_active"] is False


def test_inactive_alerts_are_ignored(settings, fake_db):
    fake_db.seed("alerts", _alert("a1", "AAPL", "above", 100.0, is_active=False))
    evaluator, fetcher, trigger = _evaluator(settings, fake_db, {})

    result = asyncio.run(evaluator.run())

    assert result == {"ok": True, "symbols": 0, "fired": 0}
    fetcher.assert_not_awaited()
    trigger.assert_awaited_once()


def test_dispatch_trigger_failure_is_ignored(settings, fake_db):
    fake_db.seed("alerts", _alert("a1", "AAPL", "above", 100.0))
    trigger = AsyncMock(side_effect=RuntimeError("functions gateway down"))
    evaluator, _, _ = _evaluator(settings, fake_db, {"AAPL": 101.0}, trigger=trigger)

    result = asyncio.run(evaluator.run())

    assert result == {"ok": True, "symbols": 1, "fired": 1}


def test_alert_query_failure_propagates(settings, fake_db):
    fake_db.failures[("alerts", "select")] = RuntimeError("relation alerts does not exist")
    evaluator, _, trigger = _evaluator(settings, fake_db, {})

    with pytest.raises(RuntimeError, match="relation alerts"):
        asyncio.run(evaluator.run())
    trigger.assert_not_awaited()


def test_write_failure_on_one_alert_does_not_stop_batch(settings, fake_db):
    fake_db.seed(
        "alerts",
        _alert("a1", "AAPL", "above", 100.0),
        _alert("a2", "MSFT", "above", 100.0),
    )
    fake_db.failures[("alert_events", "insert")] = RuntimeError("insert rejected")
    evaluator, _, _ = _evaluator(settings, fake_db, {"AAPL": 101.0, "MSFT": 101.0})

    result = asyncio.run(evaluator.run())

    assert result["fired"] == 0
    assert _row(fake_db, "alerts", "a1")["last_price"] == 101.0
    assert _row(fake_db, "alerts", "a2")["last_price"] == 101.0
