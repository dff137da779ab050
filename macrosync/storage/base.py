"""Local datastore contract consumed by the sync engine."""

from contextlib import AbstractContextManager
from typing import Any, Dict, Iterable, List, Optional, Protocol

from macrosync.types import QueueEntry, SyncAction


class LocalStore(Protocol):
    """Keyed, filterable, transactional local storage with a mutation queue.

    Writes made through ``apply_remote_rows`` and ``complete_entry`` are
    engine writes: they never enqueue mutations.
    """

    def transaction(self) -> AbstractContextManager: ...

    # === Records ===

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]: ...

    def list_by_synced(self, table: str, synced: int) -> List[Dict[str, Any]]: ...

    def ids_by_synced(self, table: str, synced: int) -> List[str]: ...

    def apply_remote_rows(self, table: str, rows: Iterable[Dict[str, Any]]) -> int: ...

    def delete_with_dependents(self, table: str, record_ids: List[str]) -> int: ...

    def get_setting(self, key: str = ...) -> Optional[Dict[str, Any]]: ...

    # === Queue ===

    def enqueue(
        self,
        table: str,
        action: SyncAction,
        payload: Any,
        enqueued_at: Optional[int] = None,
    ) -> int: ...

    def queue_entries(self) -> List[QueueEntry]: ...

    def complete_entry(self, entry: QueueEntry, mark_synced: bool = True) -> None: ...

    def discard_entry(self, entry: QueueEntry) -> None: ...

    def record_queue_failure(self, entry: QueueEntry, error: str) -> int: ...
