"""
macrosync CLI - run and inspect the sync engine.

Usage:
    macrosync sync [--json]
    macrosync status [--json]
    macrosync requeue
    macrosync run
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from macrosync.config import SyncSettings, get_settings
from macrosync.errors import ConfigurationError
from macrosync.logging_config import setup_macrosync_logging
from macrosync.queue import MutationQueue
from macrosync.storage import SQLiteStore
from macrosync.watermark import FileWatermarkStore

logger = logging.getLogger(__name__)


async def build_orchestrator(settings: SyncSettings, store: SQLiteStore):
    """Create the Supabase-backed orchestrator described by ``settings``."""
    if not settings.has_remote:
        raise ConfigurationError(
            "MACROSYNC_SUPABASE_URL and MACROSYNC_SUPABASE_KEY must be set"
        )

    from supabase import acreate_client

    from macrosync.connectivity import ConnectivityMonitor
    from macrosync.identity import SupabaseIdentity
    from macrosync.remote import SupabaseRemote
    from macrosync.sync import SyncOrchestrator

    client = await acreate_client(settings.supabase_url, settings.supabase_key)
    identity = SupabaseIdentity(client)
    if settings.auth_email and settings.auth_password:
        user_id = await identity.sign_in(settings.auth_email, settings.auth_password)
        logger.info(f"Signed in as {user_id}")

    remote = SupabaseRemote(client)
    monitor = ConnectivityMonitor(remote.ping, interval=settings.connectivity_interval_seconds)
    return SyncOrchestrator(
        store,
        remote,
        identity,
        FileWatermarkStore(settings.watermark_path),
        settings=settings,
        connectivity=monitor,
        record_events=True,
    )


def cmd_status(args, settings: SyncSettings, store: SQLiteStore) -> int:
    """Show queue counts and stored watermarks."""
    status = store.queue_status()
    watermarks = FileWatermarkStore(settings.watermark_path).all()
    if args.json:
        print(json.dumps({"queue": status, "watermarks": watermarks}, indent=2))
        return 0

    print(f"Pending changes: {status['pending']} ({status['failing']} with failed attempts)")
    for table, count in sorted(status["by_table"].items()):
        print(f"  {table}: {count}")
    if watermarks:
        print("Watermarks:")
        for key, value in sorted(watermarks.items()):
            print(f"  {key}: {value}")
    else:
        print("Watermarks: none (next pull is a full pull)")
    return 0


def cmd_requeue(args, settings: SyncSettings, store: SQLiteStore) -> int:
    """Queue creates for unsynced rows missing from the queue."""
    added = MutationQueue(store).requeue_unsynced()
    print(f"Re-queued {added} unsynced record(s)")
    return 0


async def _sync_once(settings: SyncSettings, store: SQLiteStore):
    orchestrator = await build_orchestrator(settings, store)
    return await orchestrator.sync()


def cmd_sync(args, settings: SyncSettings, store: SQLiteStore) -> int:
    """Run a single push-then-pull cycle."""
    result = asyncio.run(_sync_once(settings, store))
    if result is None:
        print("Sync skipped: already in progress")
        return 0
    if args.json:
        payload = {
            "pushed": result.pushed,
            "pulled": result.pulled,
            "dropped": result.dropped,
            "failed": result.failed,
            "reconciled": result.reconciled,
            "watermark": result.watermark,
            "errors": result.errors,
            "success": result.success,
        }
        print(json.dumps(payload, indent=2))
    else:
        print(
            f"Pushed {result.pushed}, pulled {result.pulled}, "
            f"failed {result.failed}, reconciled {result.reconciled}"
        )
        for error in result.errors[:5]:
            print(f"  error: {error}")
    return 0 if result.success else 2


async def _run_forever(settings: SyncSettings, store: SQLiteStore):
    orchestrator = await build_orchestrator(settings, store)
    await orchestrator.start()
    try:
        await asyncio.Event().wait()
    finally:
        await orchestrator.stop()


def cmd_run(args, settings: SyncSettings, store: SQLiteStore) -> int:
    """Run the periodic sync loop until interrupted."""
    try:
        asyncio.run(_run_forever(settings, store))
    except KeyboardInterrupt:
        print("Stopped")
    return 0


COMMANDS = {
    "status": cmd_status,
    "requeue": cmd_requeue,
    "sync": cmd_sync,
    "run": cmd_run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="macrosync", description="Offline-first sync between SQLite and Supabase"
    )
    parser.add_argument("--db", help="Path to the local database (overrides settings)")
    parser.add_argument("--log-level", help="Logging level (default from settings)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_sync = subparsers.add_parser("sync", help="Run one sync cycle")
    p_sync.add_argument("--json", action="store_true", help="Output as JSON")

    p_status = subparsers.add_parser("status", help="Show pending changes and watermarks")
    p_status.add_argument("--json", action="store_true", help="Output as JSON")

    subparsers.add_parser("requeue", help="Re-queue unsynced local records")
    subparsers.add_parser("run", help="Sync periodically until interrupted")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    if args.db:
        settings = settings.model_copy(update={"db_path": Path(args.db)})

    setup_macrosync_logging(args.log_level or settings.log_level, data_dir=settings.data_dir)
    store = SQLiteStore(settings.database_path)

    try:
        return COMMANDS[args.command](args, settings, store)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
