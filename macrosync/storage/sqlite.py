"""SQLite storage backend for macrosync.

Local-first storage with:
- One JSON-document table per synchronized entity, each row carrying a
  ``synced`` flag (0 = pending, 1 = confirmed remote)
- A durable mutation queue (``sync_queue``)
- A local-only ``settings`` table
"""

import contextlib
import json
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from macrosync.tables import OWNER_FIELD, SyncTable
from macrosync.types import (
    SYNC_CONFIRMED,
    SYNC_PENDING,
    QueueEntry,
    SyncAction,
    now_ms,
    utc_now,
)

from .schema import init_db, validate_table_name

logger = logging.getLogger(__name__)

LOCAL_SETTINGS_KEY = "local-settings"


class SQLiteStore:
    """SQLite-backed local datastore and mutation queue.

    Args:
        db_path: Path to the database file (default: configured database path).
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        if db_path is None:
            from macrosync.config import get_settings

            db_path = get_settings().database_path
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # === Connections ===

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """One connection per operation: commit on success, roll back on error, always close."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def transaction(self):
        """All-or-nothing scope for multi-table writes."""
        return self._connect()

    def close(self):
        """Close any resources.

        Connections are per-operation, so this exists for API symmetry.
        """
        pass

    def _init_db(self):
        with self._connect() as conn:
            init_db(conn)

    # === Serialization ===

    def _to_json(self, data: Any) -> Optional[str]:
        if data is None:
            return None
        return json.dumps(data, default=str)

    def _from_json(self, s: Optional[str]) -> Any:
        if s is None:
            return None
        try:
            return json.loads(s)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable JSON value in local store")
            return None

    def _row_to_record(self, row: sqlite3.Row) -> Dict[str, Any]:
        record = self._from_json(row["data"]) or {}
        record["id"] = row["id"]
        record["synced"] = row["synced"]
        return record

    def _row_to_entry(self, row: sqlite3.Row) -> QueueEntry:
        return QueueEntry(
            id=row["id"],
            table=row["table_name"],
            action=SyncAction(row["action"]),
            payload=self._from_json(row["payload"]),
            enqueued_at=row["enqueued_at"],
            attempt_count=row["attempt_count"] or 0,
            last_attempt_at=row["last_attempt_at"],
            last_error=row["last_error"],
        )

    # === Records ===

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get one record by primary key."""
        validate_table_name(table)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT id, data, synced FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_by_synced(self, table: str, synced: int) -> List[Dict[str, Any]]:
        """List records of a table filtered by their synced flag."""
        validate_table_name(table)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id, data, synced FROM {table} WHERE synced = ? ORDER BY id",
                (synced,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def ids_by_synced(self, table: str, synced: int) -> List[str]:
        """Primary keys of a table filtered by their synced flag."""
        validate_table_name(table)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id FROM {table} WHERE synced = ? ORDER BY id", (synced,)
            ).fetchall()
        return [row["id"] for row in rows]

    def count(self, table: str) -> int:
        validate_table_name(table)
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def _put(self, conn: sqlite3.Connection, table: str, record: Dict[str, Any], synced: int):
        validate_table_name(table)
        data = {k: v for k, v in record.items() if k != "synced"}
        conn.execute(
            f"""INSERT INTO {table} (id, data, synced, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    synced = excluded.synced,
                    updated_at = excluded.updated_at""",
            (str(record["id"]), self._to_json(data), synced, data.get("updated_at")),
        )

    def apply_remote_rows(self, table: str, rows: Iterable[Dict[str, Any]]) -> int:
        """Upsert rows fetched from the remote store, marked ``synced=1``.

        Remote rows are authoritative: local pending changes to the same ids
        are overwritten. Nothing is enqueued.
        """
        applied = 0
        with self._connect() as conn:
            for row in rows:
                if row.get("id") is None:
                    logger.warning(f"Skipping remote {table} row without id")
                    continue
                self._put(conn, table, row, SYNC_CONFIRMED)
                applied += 1
        return applied

    def delete_with_dependents(self, table: str, record_ids: List[str]) -> int:
        """Delete records plus their confirmed child rows in one transaction.

        Returns:
            Number of parent records deleted.
        """
        if not record_ids:
            return 0
        validate_table_name(table)
        dependents = SyncTable.from_name(table).spec.dependents
        placeholders = ",".join("?" * len(record_ids))

        with self._connect() as conn:
            for child_table, column in dependents:
                validate_table_name(child_table)
                cursor = conn.execute(
                    f"""DELETE FROM {child_table}
                        WHERE synced = ?
                          AND json_extract(data, '$.{column}') IN ({placeholders})""",
                    [SYNC_CONFIRMED, *record_ids],
                )
                if cursor.rowcount:
                    logger.debug(f"Removed {cursor.rowcount} dependent {child_table} rows")
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE id IN ({placeholders})", record_ids
            )
            return cursor.rowcount

    # === Local mutations (recorded in the queue) ===

    def record_create(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a local record and queue its creation atomically."""
        sync_table = SyncTable.from_name(table)
        now = utc_now()
        row = dict(record)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", now)
        row.setdefault("updated_at", row["created_at"])
        row["synced"] = SYNC_PENDING

        with self._connect() as conn:
            self._put(conn, sync_table.value, row, SYNC_PENDING)
            self._enqueue(conn, sync_table.value, SyncAction.CREATE, row)
        return row

    def record_update(
        self, table: str, record_id: str, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Apply changes to a local record and queue the update atomically.

        Returns:
            The updated record, or None if no record has that id.
        """
        sync_table = SyncTable.from_name(table)
        existing = self.get(sync_table.value, record_id)
        if existing is None:
            return None

        queued = self._is_queued_mutation(sync_table, existing)
        row = {**existing, **changes, "id": existing["id"], "updated_at": utc_now()}
        row["synced"] = SYNC_PENDING if queued else existing["synced"]
        with self._connect() as conn:
            self._put(conn, sync_table.value, row, row["synced"])
            if queued:
                self._enqueue(conn, sync_table.value, SyncAction.UPDATE, row)
        return row

    def record_delete(self, table: str, record_id: str) -> bool:
        """Delete a local record and queue the remote delete atomically."""
        sync_table = SyncTable.from_name(table)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT id, data, synced FROM {sync_table.value} WHERE id = ?", (record_id,)
            ).fetchone()
            if row is None:
                return False
            conn.execute(f"DELETE FROM {sync_table.value} WHERE id = ?", (record_id,))
            if not self._is_queued_mutation(sync_table, self._row_to_record(row)):
                return True
            self._enqueue(conn, sync_table.value, SyncAction.DELETE, {"id": record_id})
        return True

    def _is_queued_mutation(self, sync_table: SyncTable, existing: Dict[str, Any]) -> bool:
        """False for system-owned rows the remote store never lets a user change."""
        if sync_table.spec.ownerless_rows_local_only and not existing.get(OWNER_FIELD):
            logger.debug(
                f"Not queueing change to system-owned {sync_table.value} {existing['id']}"
            )
            return False
        return True

    # === Settings (local only) ===

    def get_setting(self, key: str = LOCAL_SETTINGS_KEY) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM settings WHERE id = ?", (key,)).fetchone()
        return self._from_json(row["data"]) if row else None

    def save_setting(self, data: Dict[str, Any], key: str = LOCAL_SETTINGS_KEY) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO settings (id, data, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       data = excluded.data, updated_at = excluded.updated_at""",
                (key, self._to_json(data), utc_now()),
            )

    # === Queue ===

    def _enqueue(
        self,
        conn: sqlite3.Connection,
        table: str,
        action: SyncAction,
        payload: Any,
        enqueued_at: Optional[int] = None,
    ) -> int:
        entry = QueueEntry(
            table=table,
            action=SyncAction(action),
            payload=payload,
            enqueued_at=enqueued_at if enqueued_at is not None else now_ms(),
        )
        cursor = conn.execute(
            """INSERT INTO sync_queue (table_name, action, record_id, payload, enqueued_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                entry.table,
                entry.action.value,
                entry.record_id,
                self._to_json(entry.payload),
                entry.enqueued_at,
            ),
        )
        return cursor.lastrowid or 0

    def enqueue(
        self,
        table: str,
        action: SyncAction,
        payload: Any,
        enqueued_at: Optional[int] = None,
    ) -> int:
        """Append a mutation to the queue. Returns the queue entry id."""
        with self._connect() as conn:
            return self._enqueue(conn, table, action, payload, enqueued_at)

    def queue_entries(self) -> List[QueueEntry]:
        """All pending queue entries in FIFO order."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT id, table_name, action, payload, enqueued_at,
                          attempt_count, last_attempt_at, last_error
                   FROM sync_queue
                   ORDER BY enqueued_at, id"""
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def pending_count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]

    def complete_entry(self, entry: QueueEntry, mark_synced: bool = True) -> None:
        """Remove a confirmed entry and mark its local record ``synced=1``.

        The record keeps ``synced=0`` while other entries for it remain
        queued, so a later local edit is not reported as confirmed.
        """
        record_id = entry.record_id
        with self._connect() as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry.id,))
            if not mark_synced or record_id is None or entry.action is SyncAction.DELETE:
                return
            try:
                table = validate_table_name(entry.table)
            except ValueError:
                return
            remaining = conn.execute(
                "SELECT 1 FROM sync_queue WHERE table_name = ? AND record_id = ? LIMIT 1",
                (entry.table, record_id),
            ).fetchone()
            if remaining is None:
                conn.execute(
                    f"UPDATE {table} SET synced = ? WHERE id = ?", (SYNC_CONFIRMED, record_id)
                )

    def discard_entry(self, entry: QueueEntry) -> None:
        """Drop an unrecoverable entry together with its local row.

        Every queued entry for the same record is removed as well; they
        would carry the same malformed data.
        """
        record_id = entry.record_id
        with self._connect() as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry.id,))
            if record_id is None:
                return
            conn.execute(
                "DELETE FROM sync_queue WHERE table_name = ? AND record_id = ?",
                (entry.table, record_id),
            )
            table = validate_table_name(entry.table)
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))

    def record_queue_failure(self, entry: QueueEntry, error: str) -> int:
        """Record a failed push attempt. Returns the new attempt count."""
        with self._connect() as conn:
            conn.execute(
                """UPDATE sync_queue
                   SET attempt_count = attempt_count + 1,
                       last_error = ?,
                       last_attempt_at = ?
                   WHERE id = ?""",
                (error[:500], now_ms(), entry.id),
            )
            row = conn.execute(
                "SELECT attempt_count FROM sync_queue WHERE id = ?", (entry.id,)
            ).fetchone()
        return row["attempt_count"] if row else 0

    def queue_status(self) -> Dict[str, Any]:
        """Pending queue counts grouped by table and action."""
        with self._connect() as conn:
            pending = conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]
            failing = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE attempt_count > 0"
            ).fetchone()[0]
            table_rows = conn.execute(
                """SELECT table_name, COUNT(*) as count
                   FROM sync_queue GROUP BY table_name"""
            ).fetchall()
            action_rows = conn.execute(
                """SELECT action, COUNT(*) as count
                   FROM sync_queue GROUP BY action"""
            ).fetchall()

        return {
            "pending": pending,
            "failing": failing,
            "by_table": {row["table_name"]: row["count"] for row in table_rows},
            "by_action": {row["action"]: row["count"] for row in action_rows},
        }
