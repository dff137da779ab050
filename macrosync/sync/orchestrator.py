"""Sync orchestrator: schedules cycles and enforces single-flight execution.

A cycle is push-then-pull. Triggers (interval timer, reconnect, sign-in or
token refresh, manual calls) arriving while a cycle is in flight are
dropped, not queued. A running cycle is never cancelled.
"""

import asyncio
import logging
from typing import Optional, Set

from macrosync.config import SyncSettings
from macrosync.connectivity import ConnectivityMonitor
from macrosync.errors import ErrorClassifier, PostgrestErrorClassifier
from macrosync.identity import SIGNED_IN, TOKEN_REFRESHED, IdentityProvider
from macrosync.logging_config import log_sync_event
from macrosync.queue import MutationQueue
from macrosync.remote import RemoteStore
from macrosync.storage.base import LocalStore
from macrosync.types import SyncResult
from macrosync.watermark import WatermarkStore

from .pull import PullPipeline
from .push import PushPipeline
from .reconcile import ReconciliationSweep

logger = logging.getLogger(__name__)

SYNC_TRIGGER_EVENTS = frozenset({SIGNED_IN, TOKEN_REFRESHED})


class SyncOrchestrator:
    """Long-lived coordinator of sync cycles.

    Construct once at application start with its collaborators, then call
    ``start()``; ``stop()`` on shutdown.

    Args:
        store: Local datastore and mutation queue.
        remote: Remote datastore.
        identity: Source of the acting user and auth events.
        watermarks: Persisted pull watermarks.
        settings: Engine settings (intervals, page sizes, retry policy).
        classifier: Remote error classifier shared by both pipelines.
        connectivity: Optional monitor driving reconnect triggers.
        record_events: Append cycle summaries to the sync-events log.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        identity: IdentityProvider,
        watermarks: WatermarkStore,
        settings: Optional[SyncSettings] = None,
        classifier: Optional[ErrorClassifier] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        record_events: bool = False,
    ):
        self._settings = settings or SyncSettings()
        self._identity = identity
        self._connectivity = connectivity
        self._record_events = record_events
        classifier = classifier or PostgrestErrorClassifier()

        self.queue = MutationQueue(store)
        self.push = PushPipeline(store, remote, classifier=classifier)
        self.reconciler = ReconciliationSweep(
            store, remote, page_size=self._settings.reconcile_page_size
        )
        self.pull = PullPipeline(
            store,
            remote,
            watermarks,
            watermark_base=self._settings.watermark_key_base,
            reconciler=self.reconciler,
            classifier=classifier,
            page_size=self._settings.pull_page_size,
            max_attempts=self._settings.pull_max_attempts,
            retry_unit_delay=self._settings.retry_unit_delay,
        )

        self._syncing = False
        self._online = True
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()

    @property
    def syncing(self) -> bool:
        """True while a cycle is in flight."""
        return self._syncing

    @property
    def running(self) -> bool:
        return self._timer_task is not None

    # === Cycle ===

    async def sync(self) -> Optional[SyncResult]:
        """Run one push-then-pull cycle.

        Returns:
            The cycle result, or None if another cycle was already running.
            Failures are logged and reported in ``SyncResult.errors``; they
            are never raised.
        """
        if self._syncing:
            logger.info("Sync skipped: already in progress")
            return None
        self._syncing = True

        try:
            logger.info("Starting sync process")
            user_id = await self._identity.current_user_id()
            push_result = await self.push.push(user_id)
            pull_result = await self.pull.pull(user_id)
            result = SyncResult.from_phases(push_result, pull_result)
            logger.info(
                f"Sync complete: pushed={result.pushed}, pulled={result.pulled}, "
                f"failed={result.failed}, reconciled={result.reconciled}"
            )
            if self._record_events:
                log_sync_event(
                    "push",
                    result.pushed,
                    len(push_result.errors),
                    identity=user_id,
                    data_dir=self._settings.data_dir,
                )
                log_sync_event(
                    "pull",
                    result.pulled,
                    len(pull_result.errors),
                    identity=user_id,
                    data_dir=self._settings.data_dir,
                )
            return result
        except Exception as e:
            logger.error(f"Sync failed: {e}", exc_info=True)
            return SyncResult(errors=[f"Sync failed: {e}"])
        finally:
            self._syncing = False

    def trigger(self, reason: str = "manual") -> Optional[asyncio.Task]:
        """Schedule a cycle in the background unless one is in flight."""
        if self._syncing:
            logger.debug(f"Sync trigger ({reason}) dropped: already in progress")
            return None
        loop = self._loop or asyncio.get_running_loop()
        logger.debug(f"Sync triggered by {reason}")
        task = loop.create_task(self.sync())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        return task

    def requeue_unsynced(self) -> int:
        """Rebuild queue entries for unsynced rows that lost theirs."""
        return self.queue.requeue_unsynced()

    # === Event handlers ===

    def handle_auth_event(self, event: str) -> None:
        if event in SYNC_TRIGGER_EVENTS:
            self._call_soon(lambda: self.trigger(event.lower()))

    def handle_online(self) -> None:
        self._online = True
        self._call_soon(lambda: self.trigger("reconnect"))

    def handle_offline(self) -> None:
        self._online = False
        logger.info("Offline - periodic sync paused, changes stay queued")

    def _call_soon(self, callback) -> None:
        if self._loop is None:
            callback()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            callback()
        else:
            self._loop.call_soon_threadsafe(callback)

    # === Lifecycle ===

    async def start(self) -> None:
        """Subscribe to triggers and start the interval timer.

        An immediate cycle runs first when the remote is reachable.
        """
        if self._timer_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._identity.subscribe(self.handle_auth_event)
        if self._connectivity is not None:
            self._connectivity.add_listener(
                on_online=self.handle_online, on_offline=self.handle_offline
            )
            await self._connectivity.check()
            self._online = self._connectivity.online
            self._connectivity.start()
        self._timer_task = self._loop.create_task(self._run_timer())
        logger.info(f"Sync started (interval {self._settings.sync_interval_seconds}s)")

    async def _run_timer(self):
        if self._online:
            self.trigger("startup")
        while True:
            await asyncio.sleep(self._settings.sync_interval_seconds)
            if self._online and not self._syncing:
                self.trigger("interval")

    async def stop(self, wait: bool = True) -> None:
        """Stop the timer and unsubscribe; in-flight cycles finish unless ``wait`` is False."""
        self._identity.unsubscribe()
        if self._connectivity is not None:
            await self._connectivity.stop()
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        if wait and self._cycles:
            await asyncio.gather(*self._cycles, return_exceptions=True)
        logger.info("Sync stopped")
