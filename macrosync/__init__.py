"""
macrosync - offline-first synchronization between a local SQLite store
and a shared Supabase backend.
"""

from macrosync.queue import MutationQueue, find_missing_entries, order_entries
from macrosync.storage import SQLiteStore
from macrosync.sync import PullPipeline, PushPipeline, ReconciliationSweep, SyncOrchestrator
from macrosync.tables import Ownership, SyncTable, TableSpec
from macrosync.types import (
    PullResult,
    PushResult,
    QueueEntry,
    SyncAction,
    SyncResult,
)

__version__ = "0.1.0"

__all__ = [
    "MutationQueue",
    "Ownership",
    "PullPipeline",
    "PullResult",
    "PushPipeline",
    "PushResult",
    "QueueEntry",
    "ReconciliationSweep",
    "SQLiteStore",
    "SyncAction",
    "SyncOrchestrator",
    "SyncResult",
    "SyncTable",
    "TableSpec",
    "find_missing_entries",
    "order_entries",
]
