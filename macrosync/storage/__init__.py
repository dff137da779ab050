"""Local storage for macrosync."""

from .base import LocalStore
from .schema import ALLOWED_TABLES, validate_table_name
from .sqlite import LOCAL_SETTINGS_KEY, SQLiteStore

__all__ = [
    "ALLOWED_TABLES",
    "LOCAL_SETTINGS_KEY",
    "LocalStore",
    "SQLiteStore",
    "validate_table_name",
]
