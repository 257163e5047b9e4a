"""Persistence for the daily usage ledger."""

import json
from typing import Any, Protocol

from modelgate.db.connection import get_conn
from modelgate.db.migrations.runner import run_migrations


class UsageStore(Protocol):
    def load_days(self) -> dict[str, dict[str, Any]]: ...

    def save_day(self, day: str, payload: dict[str, Any]) -> None: ...

    def delete_days(self, days: list[str]) -> None: ...

    def clear(self) -> None: ...


class SQLiteUsageStore:
    """One JSON row per (namespace, day) in the ``usage_days`` table."""

    def __init__(self, namespace: str, *, path: str | None = None) -> None:
        self.namespace = namespace
        self.path = path
        self._migrated = False

    def _ensure_schema(self) -> None:
        if not self._migrated:
            run_migrations(self.path)
            self._migrated = True

    def load_days(self) -> dict[str, dict[str, Any]]:
        self._ensure_schema()
        with get_conn(self.path) as conn:
            rows = conn.execute(
                "SELECT day, payload_json FROM usage_days WHERE namespace=? ORDER BY day",
                (self.namespace,),
            ).fetchall()
        days: dict[str, dict[str, Any]] = {}
        for row in rows:
            payload = json.loads(row["payload_json"])
            if isinstance(payload, dict):
                days[str(row["day"])] = payload
        return days

    def save_day(self, day: str, payload: dict[str, Any]) -> None:
        self._ensure_schema()
        with get_conn(self.path) as conn:
            conn.execute(
                "INSERT INTO usage_days(namespace, day, payload_json, updated_at) "
                "VALUES(?, ?, ?, datetime('now')) "
                "ON CONFLICT(namespace, day) DO UPDATE SET "
                "payload_json=excluded.payload_json, updated_at=excluded.updated_at",
                (self.namespace, day, json.dumps(payload, sort_keys=True)),
            )

    def delete_days(self, days: list[str]) -> None:
        if not days:
            return
        self._ensure_schema()
        with get_conn(self.path) as conn:
            conn.executemany(
                "DELETE FROM usage_days WHERE namespace=? AND day=?",
                [(self.namespace, day) for day in days],
            )

    def clear(self) -> None:
        self._ensure_schema()
        with get_conn(self.path) as conn:
            conn.execute("DELETE FROM usage_days WHERE namespace=?", (self.namespace,))


class MemoryUsageStore:
    """Process-local store; used when persistence is disabled."""

    def __init__(self) -> None:
        self.days: dict[str, dict[str, Any]] = {}

    def load_days(self) -> dict[str, dict[str, Any]]:
        return {day: json.loads(json.dumps(payload)) for day, payload in self.days.items()}

    def save_day(self, day: str, payload: dict[str, Any]) -> None:
        self.days[day] = json.loads(json.dumps(payload))

    def delete_days(self, days: list[str]) -> None:
        for day in days:
            self.days.pop(day, None)

    def clear(self) -> None:
        self.days.clear()
