"""Shared test doubles and helpers for the Yunzhou test suite."""

import io
from itertools import count
from typing import Any, Optional

import openpyxl
import redis

from yunzhou.core.bulk_writer import BatchPolicy
from yunzhou.core.config_store import ConfigStore
from yunzhou.core.exceptions import StoreRequestError
from yunzhou.core.ingestion_engine import SyncOrchestrator
from yunzhou.core.schema_registry import SchemaRegistry

NO_WAIT_POLICY = BatchPolicy(throttle_seconds=0, cooldown_seconds=0)


def make_workbook_bytes(rows: list[list], sheet_name: str = "Sheet1") -> bytes:
    """Build an .xlsx file in memory. Rows are written as given."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    wb.close()
    return buf.getvalue()


class DictRedis:
    """Minimal stand-in for redis.Redis with decode_responses=True."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise redis.ConnectionError("redis down")

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = value
        return True

    def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    def ping(self):
        self._check()
        return True

    def close(self):
        pass


class InMemoryStore:
    """Store double with StoreClient's interface.

    Upserts merge on the conflict key and, like the real store, reject a
    request that repeats a key. ``failures`` maps a 1-based upsert attempt
    number to the exception raised on that attempt.
    """

    def __init__(self, failures: Optional[dict[int, Exception]] = None):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.failures = failures or {}
        self.attempts: list[tuple[str, int]] = []
        self.closed = False
        self.base_url = "https://store.test"
        self._ids = count(1)

    def upsert(self, table: str, rows: list[dict[str, Any]], on_conflict: Optional[str] = None) -> None:
        self.attempts.append((table, len(rows)))
        error = self.failures.get(len(self.attempts))
        if error is not None:
            raise error
        stored = self.tables.setdefault(table, [])
        keys = on_conflict.split(",") if on_conflict else None
        if keys:
            identities = [tuple(r.get(k) for k in keys) for r in rows]
            if len(set(identities)) < len(identities):
                raise StoreRequestError(
                    500, "ON CONFLICT DO UPDATE command cannot affect row a second time",
                    store_code="21000",
                )
        for row in rows:
            existing = None
            if keys:
                identity = tuple(row.get(k) for k in keys)
                existing = next(
                    (r for r in stored if tuple(r.get(k) for k in keys) == identity), None
                )
            if existing is not None:
                existing.update(row)
            else:
                stored.append({"id": next(self._ids), **row})

    def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        self.upsert(table, rows, None)

    def count_rows(self, table: str) -> int:
        return len(self.tables.get(table, []))

    def latest_date(self, table: str) -> Optional[str]:
        dates = [r["date"] for r in self.tables.get(table, []) if r.get("date")]
        return max(dates) if dates else None

    def fetch_range(self, table: str, start: str, end: str) -> list[dict[str, Any]]:
        rows = [r for r in self.tables.get(table, []) if start <= (r.get("date") or "") <= end]
        return sorted(rows, key=lambda r: (r["date"], r["id"]))

    def fetch_all(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables.get(table, []))

    def delete_rows(self, table: str, ids: list[Any]) -> None:
        wanted = set(ids)
        self.tables[table] = [r for r in self.tables.get(table, []) if r["id"] not in wanted]

    def delete_all(self, table: str) -> None:
        self.tables[table] = []

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


def make_orchestrator(
    store: Optional[InMemoryStore] = None,
    config_store: Optional[ConfigStore] = None,
    policy: BatchPolicy = NO_WAIT_POLICY,
    today: str = "2026-06-01",
) -> SyncOrchestrator:
    """Orchestrator wired to in-memory doubles and the shipped schemas."""
    config_store = config_store or ConfigStore(DictRedis(), namespace="test")
    return SyncOrchestrator(
        store=store,
        config_store=config_store,
        schema_registry=SchemaRegistry(config_store=config_store),
        policy=policy,
        sleep=lambda _: None,
        today=lambda: today,
    )
