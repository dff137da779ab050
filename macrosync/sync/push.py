"""Push pipeline: drains the mutation queue into the remote store.

Entries are processed one at a time in dependency order (see
``macrosync.queue.order_entries``). Writes are upserts keyed by ``id``,
so replaying an entry after a crash never duplicates a remote row.
"""

import logging
from typing import Any, Dict, Optional

from macrosync.errors import (
    ErrorClassifier,
    MalformedReferenceError,
    PostgrestErrorClassifier,
    RemoteError,
    SyncError,
)
from macrosync.normalize import (
    apply_ownership,
    expand_dotted_keys,
    is_invalid_reference,
    normalize_meal_type,
    strip_local_fields,
)
from macrosync.queue import MutationQueue
from macrosync.remote import RemoteStore
from macrosync.storage.base import LocalStore
from macrosync.tables import SyncTable
from macrosync.types import PushResult, QueueEntry, SyncAction

logger = logging.getLogger(__name__)

PUSHED = "pushed"
DROPPED = "dropped"


class PushPipeline:
    """Delivers queued local mutations to the remote store.

    Args:
        store: Local datastore holding records and the queue.
        remote: Remote datastore.
        classifier: Interprets remote errors (default: PostgREST rules).
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self._store = store
        self._remote = remote
        self._queue = MutationQueue(store)
        self._classifier = classifier or PostgrestErrorClassifier()

    async def push(self, user_id: Optional[str]) -> PushResult:
        """Push every pending entry once.

        Failed entries stay queued for the next cycle; one bad entry never
        blocks the ones after it.
        """
        result = PushResult()
        entries = self._queue.pending()
        if not entries:
            return result

        if not user_id:
            logger.info(f"No active session, skipping push of {len(entries)} queued changes")
            result.skipped = len(entries)
            return result

        logger.info(f"Pushing {len(entries)} changes for user {user_id}")

        for entry in entries:
            try:
                outcome = await self._process_entry(entry, user_id)
            except Exception as e:
                attempts = self._queue.fail(entry, str(e))
                logger.error(
                    f"Failed to push {entry.action.value} {entry.table}:{entry.record_id} "
                    f"(attempt {attempts}): {e}",
                    exc_info=True,
                )
                result.failed += 1
                result.errors.append(f"Failed to push {entry.table}:{entry.record_id}: {e}")
                continue

            if outcome == DROPPED:
                result.dropped += 1
            else:
                result.pushed += 1

        if result.failed:
            logger.warning(f"{result.failed} queue item(s) failed and were kept for retry")
        return result

    async def _process_entry(self, entry: QueueEntry, user_id: str) -> str:
        table = SyncTable.from_name(entry.table)

        if entry.action is SyncAction.DELETE:
            return await self._push_delete(table, entry)

        if not isinstance(entry.payload, dict):
            raise SyncError(f"Queue entry {entry.id} has no record payload")

        try:
            payload = self._prepare_payload(table, entry, user_id)
        except MalformedReferenceError as e:
            logger.warning(f"Dropping malformed {table.value} {entry.action.value}: {e}")
            self._queue.discard(entry)
            return DROPPED

        logger.debug(
            f"Processing {entry.action.value} for {table.remote_name} "
            f"with user {payload.get('user_id')}"
        )
        await self.upsert_tolerating_drift(table.remote_name, payload)
        self._queue.complete(entry)
        return PUSHED

    async def _push_delete(self, table: SyncTable, entry: QueueEntry) -> str:
        record_id = entry.record_id
        if record_id is None:
            logger.warning(f"No id for delete on {table.value}, skipping queue entry {entry.id}")
            self._queue.complete(entry, mark_synced=False)
            return PUSHED

        await self._remote.delete(table.remote_name, record_id)
        self._queue.complete(entry, mark_synced=False)
        return PUSHED

    def _prepare_payload(
        self, table: SyncTable, entry: QueueEntry, user_id: str
    ) -> Dict[str, Any]:
        payload = expand_dotted_keys(strip_local_fields(entry.payload))

        parent_field = table.spec.parent_field
        if (
            parent_field
            and entry.action is SyncAction.CREATE
            and is_invalid_reference(payload.get(parent_field))
        ):
            raise MalformedReferenceError(table.value, parent_field, payload.get(parent_field))

        if entry.action is SyncAction.UPDATE and not payload.get("id"):
            raise SyncError(f"No id for update on {table.value}")

        payload = apply_ownership(table, payload, user_id)

        if table is SyncTable.LOGS:
            settings = self._store.get_setting() or {}
            meals = settings.get("meals") if isinstance(settings.get("meals"), list) else []
            payload["meal_type"] = normalize_meal_type(payload.get("meal_type"), meals)

        return payload

    async def upsert_tolerating_drift(
        self, remote_table: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Upsert, dropping columns the remote schema reports as missing.

        Each schema-mismatch error removes exactly the named column before
        retrying. Any other error, or a missing column that is not in the
        payload, is raised.

        Returns:
            The payload that was finally accepted.
        """
        while True:
            try:
                await self._remote.upsert(remote_table, payload)
                return payload
            except RemoteError as error:
                column = self._classifier.missing_column(error)
                if column is None or column not in payload:
                    raise
                logger.warning(
                    f"Retrying {remote_table} upsert without missing column {column}"
                )
                payload = {k: v for k, v in payload.items() if k != column}
