"""Reconciliation sweep: removes locally cached rows that were deleted remotely.

The incremental pull only sees rows that changed after the watermark, so
remote deletes are invisible to it. For the tables flagged in the registry
a full id scan is compared with the locally confirmed rows.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Set

from macrosync.remote import RemoteStore
from macrosync.storage.base import LocalStore
from macrosync.tables import SyncTable, reconciled_tables
from macrosync.types import SYNC_CONFIRMED

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


def find_stale_ids(local_ids: Iterable[str], remote_ids: Set[str]) -> List[str]:
    """Local ids that no longer exist remotely, in their original order."""
    return [record_id for record_id in local_ids if record_id not in remote_ids]


class ReconciliationSweep:
    """Full-scan diff between remote ids and locally confirmed rows.

    Args:
        store: Local datastore.
        remote: Remote datastore.
        page_size: Ids per range query.
        tables: Tables to sweep (default: those flagged ``reconcile_deletions``).
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        page_size: int = DEFAULT_PAGE_SIZE,
        tables: Optional[Sequence[SyncTable]] = None,
    ):
        self._store = store
        self._remote = remote
        self._page_size = page_size
        self._tables = tuple(tables) if tables is not None else reconciled_tables()

    async def sweep(self) -> int:
        """Sweep every configured table. Returns the number of local rows removed."""
        removed = 0
        for table in self._tables:
            removed += await self.sweep_table(table)
        return removed

    async def sweep_table(self, table: SyncTable) -> int:
        remote_ids = await self._fetch_remote_ids(table)
        local_ids = self._store.ids_by_synced(table.value, SYNC_CONFIRMED)
        stale = find_stale_ids(local_ids, remote_ids)
        if not stale:
            return 0

        removed = self._store.delete_with_dependents(table.value, stale)
        logger.info(f"Removed {removed} locally cached {table.value} deleted remotely")
        return removed

    async def _fetch_remote_ids(self, table: SyncTable) -> Set[str]:
        ids: Set[str] = set()
        page = 0
        while True:
            start = page * self._page_size
            rows = await self._remote.fetch_ids(
                table.remote_name, start, start + self._page_size - 1
            )
            ids.update(rows)
            if len(rows) < self._page_size:
                return ids
            page += 1
