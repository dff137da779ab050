"""Database schema for the macrosync SQLite store.

Contains:
- Record table DDL (one table per registry entry)
- Queue and local-only settings DDL
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import sqlite3

from macrosync.tables import LOCAL_ONLY_TABLES, SyncTable

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Allowed table names for SQL queries (security: prevents SQL injection via table names)
ALLOWED_TABLES = frozenset({t.value for t in SyncTable} | LOCAL_ONLY_TABLES)

RECORD_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,  -- JSON snapshot of the record, without the synced flag
    synced INTEGER NOT NULL DEFAULT 0,  -- 0 = pending, 1 = confirmed remote
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_{table}_synced ON {table}(synced);
"""

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Pending local mutations, consumed by the push pipeline
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    action TEXT NOT NULL,  -- create, update, delete
    record_id TEXT,
    payload TEXT,  -- JSON snapshot (or bare id for deletes)
    enqueued_at INTEGER NOT NULL,  -- epoch milliseconds
    attempt_count INTEGER NOT NULL DEFAULT 0,
    last_attempt_at INTEGER,
    last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_table_action ON sync_queue(table_name, action);
CREATE INDEX IF NOT EXISTS idx_sync_queue_record ON sync_queue(table_name, record_id);
CREATE INDEX IF NOT EXISTS idx_sync_queue_enqueued ON sync_queue(enqueued_at);

-- Device-local settings (meal configuration); never synchronized
CREATE TABLE IF NOT EXISTS settings (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT
);
"""


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Args:
        table: Table name to validate

    Returns:
        The validated table name

    Raises:
        ValueError: If the table is not in the allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables if they do not exist yet."""
    conn.executescript(SCHEMA)
    for table in SyncTable:
        conn.executescript(RECORD_TABLE_DDL.format(table=table.value))

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row else None
    if current is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        logger.debug("Initialized sync schema v%d", SCHEMA_VERSION)
    elif current < SCHEMA_VERSION:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
