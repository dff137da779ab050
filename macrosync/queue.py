"""Mutation queue: ordering and recovery of pending local writes.

The queue itself is persisted by the local store. This module holds the
pure functions that decide push order and which unsynced rows lack a
queue entry, plus a thin ``MutationQueue`` facade used by the pipelines.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .storage.base import LocalStore
from .tables import SyncTable, create_priority
from .types import SYNC_PENDING, QueueEntry, SyncAction, now_ms

logger = logging.getLogger(__name__)


def push_order_key(entry: QueueEntry) -> Tuple[int, int, int, int]:
    """Sort key: action priority, then table depth for creates, then FIFO."""
    table_priority = create_priority(entry.table) if entry.action is SyncAction.CREATE else 0
    return (entry.action.priority, table_priority, entry.enqueued_at, entry.id or 0)


def order_entries(entries: Iterable[QueueEntry]) -> List[QueueEntry]:
    """Order entries so parents are created before children and deletes go last."""
    return sorted(entries, key=push_order_key)


def find_missing_entries(
    unsynced_rows: Mapping[str, Iterable[Dict[str, Any]]],
    queue_entries: Iterable[QueueEntry],
) -> List[Tuple[str, Dict[str, Any]]]:
    """Unsynced local rows that have no queued create.

    Args:
        unsynced_rows: Local rows with ``synced=0``, keyed by table name.
        queue_entries: Entries currently in the queue.

    Returns:
        ``(table, row)`` pairs that need a create entry.
    """
    queued = {
        (entry.table, entry.record_id)
        for entry in queue_entries
        if entry.action is SyncAction.CREATE and entry.record_id is not None
    }
    missing = []
    for table, rows in unsynced_rows.items():
        for row in rows:
            key = (table, str(row.get("id")))
            if row.get("id") is None or key in queued:
                continue
            queued.add(key)
            missing.append((table, row))
    return missing


class MutationQueue:
    """Facade over the store's queue operations.

    Args:
        store: Local datastore holding the queue.
    """

    def __init__(self, store: LocalStore):
        self._store = store

    def pending(self) -> List[QueueEntry]:
        """Pending entries in push order."""
        return order_entries(self._store.queue_entries())

    def complete(self, entry: QueueEntry, mark_synced: bool = True) -> None:
        self._store.complete_entry(entry, mark_synced=mark_synced)

    def discard(self, entry: QueueEntry) -> None:
        self._store.discard_entry(entry)

    def fail(self, entry: QueueEntry, error: str) -> int:
        return self._store.record_queue_failure(entry, error)

    def requeue_unsynced(self) -> int:
        """Queue a create for every ``synced=0`` row that has no queued create.

        Returns:
            Number of entries added.
        """
        logger.info("Re-queueing unsynced local records")
        unsynced: Dict[str, List[Dict[str, Any]]] = {}
        for table in SyncTable:
            try:
                rows = self._store.list_by_synced(table.value, SYNC_PENDING)
            except Exception as e:
                logger.error(f"Error scanning {table.value} for unsynced rows: {e}", exc_info=True)
                continue
            if rows:
                logger.info(f"Found {len(rows)} unsynced items in {table.value}")
                unsynced[table.value] = rows

        missing = find_missing_entries(unsynced, self._store.queue_entries())
        enqueued_at = now_ms()
        for table, row in missing:
            self._store.enqueue(table, SyncAction.CREATE, row, enqueued_at=enqueued_at)

        if missing:
            logger.info(f"Re-queued {len(missing)} unsynced records")
        return len(missing)
