"""Error taxonomy and remote error classification for the sync engine.

The remote store reports failures as structured errors carrying a code and
a human-readable message. How those are interpreted (schema drift,
transient vs permanent, network outage) lives behind ``ErrorClassifier``
so the message parsing can be swapped per backend.
"""

import re
from typing import Any, Optional, Protocol


class SyncError(Exception):
    """Base class for sync engine errors."""


class ConfigurationError(SyncError):
    """Raised when the engine cannot be built from the current settings."""


class UnknownTableError(SyncError):
    """Raised when a table name is not part of the table registry."""

    def __init__(self, table: str):
        super().__init__(f"Unknown sync table: {table!r}")
        self.table = table


class MalformedReferenceError(SyncError):
    """A child record references its parent with an unusable identifier."""

    def __init__(self, table: str, field: str, value: Any):
        super().__init__(f"{table}.{field} holds an invalid reference: {value!r}")
        self.table = table
        self.field = field
        self.value = value


class RemoteError(SyncError):
    """Structured error returned by the remote datastore."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class NetworkError(RemoteError):
    """The remote datastore could not be reached at all."""


class TablePullError(SyncError):
    """A single table could not be pulled; other tables may still succeed."""

    def __init__(self, table: str, cause: BaseException):
        super().__init__(f"Failed to pull {table}: {cause}")
        self.table = table
        self.cause = cause


# =============================================================================
# Classification
# =============================================================================

MISSING_COLUMN_CODE = "PGRST204"
_MISSING_COLUMN_RE = re.compile(r"Could not find the '([^']+)' column")

TRANSIENT_CODE_PREFIXES = ("PGRST", "500", "502", "503", "504")
NETWORK_FAILURE_SIGNATURES = ("fetch", "Load failed", "Network request failed")


class ErrorClassifier(Protocol):
    """Backend-specific interpretation of remote errors."""

    def missing_column(self, error: BaseException) -> Optional[str]:
        """Column named by a schema-mismatch error, or None."""
        ...

    def is_transient(self, error: BaseException) -> bool:
        """Whether retrying the same request may succeed."""
        ...

    def is_network_failure(self, error: BaseException) -> bool:
        """Whether the error means the remote store is unreachable."""
        ...


class PostgrestErrorClassifier:
    """Classifier for PostgREST (Supabase) error codes and messages."""

    def missing_column(self, error: BaseException) -> Optional[str]:
        if not isinstance(error, RemoteError) or error.code != MISSING_COLUMN_CODE:
            return None
        if not isinstance(error.message, str):
            return None
        match = _MISSING_COLUMN_RE.search(error.message)
        return match.group(1) if match else None

    def is_network_failure(self, error: BaseException) -> bool:
        if isinstance(error, NetworkError):
            return True
        message = error.message if isinstance(error, RemoteError) else str(error)
        return any(signature in (message or "") for signature in NETWORK_FAILURE_SIGNATURES)

    def is_transient(self, error: BaseException) -> bool:
        if self.is_network_failure(error):
            return True
        if not isinstance(error, RemoteError):
            # Unstructured exceptions come from the client library itself
            return True
        if not error.code:
            return True
        return error.code.startswith(TRANSIENT_CODE_PREFIXES)
