"""Pull pipeline: incremental, cursor-based fetch of remote changes.

Each table is paged with ``date_field > watermark`` ordered by
``(date_field, id)``. Pulled rows overwrite local ones with ``synced=1``.
A single watermark per identity is advanced only after a cycle with no
table errors.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from macrosync.errors import (
    ErrorClassifier,
    NetworkError,
    PostgrestErrorClassifier,
    TablePullError,
)
from macrosync.remote import RemoteStore
from macrosync.storage.base import LocalStore
from macrosync.tables import SyncTable
from macrosync.types import EPOCH_ISO, PullResult, parse_datetime, utc_now
from macrosync.watermark import WatermarkStore, watermark_key

from .reconcile import ReconciliationSweep

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_UNIT_DELAY = 1.0


class PullPipeline:
    """Fetches remote changes since the last watermark and applies them locally.

    Args:
        store: Local datastore.
        remote: Remote datastore.
        watermarks: Persisted watermark store.
        watermark_base: Prefix of watermark keys.
        reconciler: Sweep run after a clean pull, before the watermark moves.
        classifier: Interprets remote errors (default: PostgREST rules).
        page_size: Rows per range query.
        max_attempts: Attempts per page for transient errors.
        retry_unit_delay: Backoff unit; attempt ``n`` waits ``n * unit`` seconds.
        sleep: Awaitable sleep (injectable for tests).
        clock: Returns the current time as an ISO string.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        watermarks: WatermarkStore,
        watermark_base: str = "macrosync_last_synced",
        reconciler: Optional[ReconciliationSweep] = None,
        classifier: Optional[ErrorClassifier] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_unit_delay: float = DEFAULT_RETRY_UNIT_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], str] = utc_now,
    ):
        self._store = store
        self._remote = remote
        self._watermarks = watermarks
        self._watermark_base = watermark_base
        self._reconciler = reconciler
        self._classifier = classifier or PostgrestErrorClassifier()
        self._page_size = page_size
        self._max_attempts = max_attempts
        self._retry_unit_delay = retry_unit_delay
        self._sleep = sleep
        self._clock = clock

    async def pull(self, user_id: Optional[str]) -> PullResult:
        """Pull every visible table once and advance the watermark if clean.

        Raises:
            NetworkError: The remote store is unreachable; nothing is advanced.
        """
        result = PullResult()
        key = watermark_key(self._watermark_base, user_id)
        stored = self._watermarks.get(key)
        since_dt = parse_datetime(stored)
        if since_dt is None:
            if stored:
                logger.warning(f"Ignoring invalid watermark {stored!r} for {key}")
            since = EPOCH_ISO
            since_dt = parse_datetime(EPOCH_ISO)
        else:
            since = stored

        max_seen: datetime = since_dt

        for table in SyncTable:
            if not table.public and not user_id:
                continue
            try:
                pulled, table_max = await self._pull_table(table, since)
            except TablePullError as e:
                logger.error(str(e))
                result.failed_tables.append(table.value)
                result.errors.append(str(e))
                continue
            result.pulled += pulled
            if table_max is not None and table_max > max_seen:
                max_seen = table_max

        result.watermark = stored
        if result.failed_tables:
            logger.warning(
                "Pull completed with table errors. Keeping last sync cursor unchanged for retry."
            )
            return result

        if self._reconciler is not None:
            result.reconciled = await self._reconciler.sweep()

        if result.pulled > 0:
            if max_seen > since_dt:
                self._advance(key, max_seen.isoformat(), result)
        else:
            self._advance(key, self._clock(), result)

        return result

    def _advance(self, key: str, value: str, result: PullResult) -> None:
        if self._watermarks.set(key, value):
            result.watermark = value
            result.watermark_advanced = True
            logger.debug(f"Advanced watermark {key} to {value}")

    async def _pull_table(self, table: SyncTable, since: str):
        """Page through one table. Returns (rows applied, max date seen)."""
        pulled = 0
        table_max: Optional[datetime] = None
        page = 0

        while True:
            start = page * self._page_size
            end = start + self._page_size - 1
            rows = await self._fetch_page(table, since, start, end)
            if not rows:
                break

            logger.info(f"Pulled {len(rows)} records for {table.value} (page {page})")
            pulled += self._store.apply_remote_rows(table.value, rows)

            for row in rows:
                ts = parse_datetime(row.get(table.date_field))
                if ts is None:
                    logger.warning(
                        f"Unparseable {table.date_field} on {table.value} row {row.get('id')}: "
                        f"{row.get(table.date_field)!r}"
                    )
                elif table_max is None or ts > table_max:
                    table_max = ts

            if len(rows) < self._page_size:
                break
            page += 1

        return pulled, table_max

    async def _fetch_page(
        self, table: SyncTable, since: str, start: int, end: int
    ) -> List[Dict[str, Any]]:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._remote.fetch_changes(
                    table.remote_name, table.date_field, since, start, end
                )
            except Exception as e:
                last_error = e
                if not self._classifier.is_transient(e):
                    break
                logger.warning(
                    f"Retry {attempt}/{self._max_attempts} for {table.remote_name} failed: {e}"
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._retry_unit_delay * attempt)

        if self._classifier.is_network_failure(last_error):
            if isinstance(last_error, NetworkError):
                raise last_error
            raise NetworkError(str(last_error)) from last_error
        raise TablePullError(table.remote_name, last_error)
