"""
Shared sync types for macrosync.

These dataclasses are the vocabulary passed between the mutation queue,
the push/pull pipelines and the orchestrator. Local rows themselves stay
plain dicts: the engine treats payloads as opaque record snapshots.
"""

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

# Values of the local ``synced`` flag
SYNC_PENDING = 0
SYNC_CONFIRMED = 1

EPOCH_ISO = "1970-01-01T00:00:00+00:00"

# Fractional seconds; PostgREST trims trailing zeros (".78", ".12345")
_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    """Get current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_datetime(s: Any) -> Optional[datetime]:
    """Parse an ISO datetime string, returning None if it is missing or invalid.

    Naive values are assumed to be UTC so they compare against remote
    ``timestamptz`` values. Fractional seconds of any length are padded or
    truncated to microseconds.
    """
    if not s or not isinstance(s, str):
        return None
    value = s.strip().replace("Z", "+00:00")
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# === Enums ===


class SyncAction(str, Enum):
    """Kind of local mutation recorded in the queue."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def priority(self) -> int:
        """Push order: creates before updates before deletes."""
        return _ACTION_PRIORITY[self]


_ACTION_PRIORITY = {
    SyncAction.CREATE: 0,
    SyncAction.UPDATE: 1,
    SyncAction.DELETE: 2,
}


# === Queue ===


@dataclass
class QueueEntry:
    """A pending local mutation waiting to be confirmed by the remote store."""

    table: str
    action: SyncAction
    payload: Any
    enqueued_at: int  # epoch milliseconds
    id: Optional[int] = None
    attempt_count: int = 0
    last_attempt_at: Optional[int] = None
    last_error: Optional[str] = None

    @property
    def record_id(self) -> Optional[str]:
        """Primary key of the affected record (bare id or ``payload["id"]``)."""
        value = self.payload.get("id") if isinstance(self.payload, dict) else self.payload
        if value is None or value == "":
            return None
        return str(value)


# === Results ===


@dataclass
class PushResult:
    """Outcome of draining the mutation queue."""

    pushed: int = 0  # Entries confirmed by the remote store
    dropped: int = 0  # Malformed entries discarded together with their local row
    failed: int = 0  # Entries kept for the next cycle
    skipped: int = 0  # Entries left untouched (no authenticated identity)
    errors: List[str] = field(default_factory=list)


@dataclass
class PullResult:
    """Outcome of one incremental pull across all tables."""

    pulled: int = 0
    reconciled: int = 0  # Local rows removed because they vanished remotely
    watermark: Optional[str] = None  # Watermark persisted after the cycle
    watermark_advanced: bool = False
    failed_tables: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of a full push-then-pull cycle."""

    pushed: int = 0
    pulled: int = 0
    dropped: int = 0
    failed: int = 0
    reconciled: int = 0
    watermark: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @classmethod
    def from_phases(cls, push: PushResult, pull: PullResult) -> "SyncResult":
        return cls(
            pushed=push.pushed,
            pulled=pull.pulled,
            dropped=push.dropped,
            failed=push.failed,
            reconciled=pull.reconciled,
            watermark=pull.watermark,
            errors=push.errors + pull.errors,
        )
