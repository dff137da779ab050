"""
Pytest fixtures and test configuration for macrosync tests.
"""

from typing import Any, Dict, List, Optional, Set

import pytest

from macrosync.errors import MISSING_COLUMN_CODE, RemoteError
from macrosync.storage import SQLiteStore
from macrosync.watermark import MemoryWatermarkStore


class FakeRemote:
    """In-memory RemoteStore.

    Tables are lists of row dicts keyed by remote table name. Optional
    per-table column sets make upserts fail with a schema-mismatch error
    for unknown columns. ``failures`` maps ``(operation, table)`` to a list
    of exceptions raised (and consumed) one per call.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.columns: Dict[str, Set[str]] = {}
        self.failures: Dict[tuple, List[BaseException]] = {}
        self.calls: List[tuple] = []
        self.online = True

    def seed(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self.tables.setdefault(table, []).extend(dict(r) for r in rows)

    def fail(self, operation: str, table: str, *errors: BaseException) -> None:
        self.failures.setdefault((operation, table), []).extend(errors)

    def _maybe_fail(self, operation: str, table: str) -> None:
        pending = self.failures.get((operation, table))
        if pending:
            raise pending.pop(0)

    def calls_for(self, operation: str, table: Optional[str] = None) -> List[tuple]:
        return [
            c for c in self.calls if c[0] == operation and (table is None or c[1] == table)
        ]

    async def fetch_changes(self, table, date_field, since, start, end):
        self.calls.append(("fetch_changes", table, since, start, end))
        self._maybe_fail("fetch_changes", table)
        rows = [r for r in self.tables.get(table, []) if (r.get(date_field) or "") > since]
        rows.sort(key=lambda r: (r.get(date_field) or "", str(r.get("id"))))
        return [dict(r) for r in rows[start : end + 1]]

    async def fetch_ids(self, table, start, end):
        self.calls.append(("fetch_ids", table, start, end))
        self._maybe_fail("fetch_ids", table)
        ids = sorted(str(r["id"]) for r in self.tables.get(table, []))
        return ids[start : end + 1]

    async def upsert(self, table, payload):
        self.calls.append(("upsert", table, dict(payload)))
        self._maybe_fail("upsert", table)
        allowed = self.columns.get(table)
        if allowed is not None:
            for column in payload:
                if column not in allowed:
                    raise RemoteError(
                        f"Could not find the '{column}' column of '{table}' in the schema cache",
                        code=MISSING_COLUMN_CODE,
                    )
        rows = self.tables.setdefault(table, [])
        for i, row in enumerate(rows):
            if row.get("id") == payload.get("id"):
                rows[i] = {**row, **payload}
                return
        rows.append(dict(payload))

    async def delete(self, table, record_id):
        self.calls.append(("delete", table, record_id))
        self._maybe_fail("delete", table)
        self.tables[table] = [r for r in self.tables.get(table, []) if r.get("id") != record_id]

    async def ping(self):
        return self.online

    def row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        for row in self.tables.get(table, []):
            if row.get("id") == record_id:
                return row
        return None


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite store in a temporary directory."""
    s = SQLiteStore(tmp_path / "macrosync.db")
    yield s
    s.close()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def watermarks():
    return MemoryWatermarkStore()


@pytest.fixture
def no_sleep():
    """Recording replacement for asyncio.sleep."""
    delays = []

    async def _sleep(delay):
        delays.append(delay)

    _sleep.delays = delays
    return _sleep
