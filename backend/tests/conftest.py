from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from tradealerts.config import Settings
from tradealerts.services.database import parse_timestamp

NOW = datetime(2026, 1, 5, 15, 30, tzinfo=timezone.utc)


class _FakeResult:
    def __init__(self, data: list[dict[str, Any]]):
        self.data = data


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        parsed = parse_timestamp(value) if "T" in value else None
        if parsed is not None:
            return parsed
    return value


def _matches_or(row: dict[str, Any], expression: str) -> bool:
    for clause in expression.split(","):
        column, op, value = clause.split(".", 2)
        current = row.get(column)
        if op == "is" and value == "null" and current is None:
            return True
        if current is None:
            continue
        if op == "eq" and str(current) == value:
            return True
        if op == "lte" and _comparable(current) <= _comparable(value):
            return True
        if op == "gte" and _comparable(current) >= _comparable(value):
            return True
    return False


class _FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict = ""
        self._filters: list[Callable[[dict[str, Any]], bool]] = []
        self._orders: list[tuple[str, bool]] = []
        self._limit: int | None = None

    def select(self, *_columns: str, **_kwargs: Any) -> "_FakeQuery":
        self._op = "select"
        return self

    def insert(self, payload: Any, **_kwargs: Any) -> "_FakeQuery":
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload: dict[str, Any], **_kwargs: Any) -> "_FakeQuery":
        self._op = "update"
        self._payload = payload
        return self

    def upsert(self, payload: Any, on_conflict: str = "", **_kwargs: Any) -> "_FakeQuery":
        self._op = "upsert"
        self._payload = payload
        self._on_conflict = on_conflict
        return self

    def delete(self, **_kwargs: Any) -> "_FakeQuery":
        self._op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "_FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values: list[Any]) -> "_FakeQuery":
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def or_(self, expression: str) -> "_FakeQuery":
        self._filters.append(lambda row: _matches_or(row, expression))
        return self

    def order(self, column: str, *, desc: bool = False, **_kwargs: Any) -> "_FakeQuery":
        self._orders.append((column, desc))
        return self

    def limit(self, size: int) -> "_FakeQuery":
        self._limit = size
        return self

    def _matching(self) -> list[dict[str, Any]]:
        return [row for row in self._db.rows(self._table) if all(check(row) for check in self._filters)]

    def execute(self) -> _FakeResult:
        with self._db.lock:
            failure = self._db.failures.get((self._table, self._op))
            if failure is not None:
                raise failure
            self._db.calls.append((self._table, self._op, copy.deepcopy(self._payload)))
            return _FakeResult(getattr(self, f"_run_{self._op}")())

    def _run_select(self) -> list[dict[str, Any]]:
        rows = self._matching()
        for column, desc in reversed(self._orders):
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: _comparable(row[column]), reverse=desc)
            rows = present + missing
        if self._limit is not None:
            rows = rows[: self._limit]
        return copy.deepcopy(rows)

    def _run_insert(self) -> list[dict[str, Any]]:
        items = self._payload if isinstance(self._payload, list) else [self._payload]
        return [copy.deepcopy(self._db.add(self._table, item)) for item in items]

    def _run_update(self) -> list[dict[str, Any]]:
        updated = []
        for row in self._matching():
            row.update(copy.deepcopy(self._payload))
            updated.append(copy.deepcopy(row))
        return updated

    def _run_upsert(self) -> list[dict[str, Any]]:
        keys = [key.strip() for key in self._on_conflict.split(",") if key.strip()]
        items = self._payload if isinstance(self._payload, list) else [self._payload]
        out = []
        for item in items:
            existing = next(
                (row for row in self._db.rows(self._table) if keys and all(row.get(k) == item.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                existing.update(copy.deepcopy(item))
                out.append(copy.deepcopy(existing))
            else:
                out.append(copy.deepcopy(self._db.add(self._table, item)))
        return out

    def _run_delete(self) -> list[dict[str, Any]]:
        doomed = self._matching()
        table = self._db.rows(self._table)
        for row in doomed:
            table.remove(row)
        return copy.deepcopy(doomed)


class FakeSupabase:
    """In-memory stand-in for the PostgREST query builder the services use."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.lock = threading.RLock()
        self._sequence = 0

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def rows(self, name: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def add(self, name: str, row: dict[str, Any]) -> dict[str, Any]:
        self._sequence += 1
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", (NOW - timedelta(days=1) + timedelta(seconds=self._sequence)).isoformat())
        self.rows(name).append(stored)
        return stored

    def seed(self, name: str, *rows: dict[str, Any]) -> list[dict[str, Any]]:
        return [self.add(name, row) for row in rows]

    def writes(self, name: str) -> list[tuple[str, Any]]:
        return [(op, payload) for table, op, payload in self.calls if table == name and op != "select"]


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        polygon_api_key="polygon-key",
        functions_base_url="https://example.supabase.co/functions/v1",
        function_secret="fn-secret",
    )
