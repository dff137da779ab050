"""Persisted pull watermarks, one per identity.

Watermarks live outside the local datastore (a small JSON file) so a
database reset forces a full re-pull rather than silently skipping rows.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from .types import parse_datetime

logger = logging.getLogger(__name__)

PUBLIC_IDENTITY = "public"


def watermark_key(base: str, user_id: Optional[str]) -> str:
    """Key for the watermark of an identity (``<base>_public`` when signed out)."""
    return f"{base}_{user_id or PUBLIC_IDENTITY}"


def is_regression(current: Optional[str], candidate: str) -> bool:
    """Whether replacing ``current`` with ``candidate`` would move it backwards."""
    current_dt = parse_datetime(current)
    candidate_dt = parse_datetime(candidate)
    if current_dt is None or candidate_dt is None:
        return False
    return candidate_dt < current_dt


class WatermarkStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> bool: ...


class MemoryWatermarkStore:
    """In-process watermark store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> bool:
        if is_regression(self._values.get(key), value):
            logger.warning(f"Refusing to move watermark {key} backwards to {value}")
            return False
        self._values[key] = value
        return True


class FileWatermarkStore:
    """Watermarks persisted as a JSON object in a single file.

    Args:
        path: Location of the JSON file (created on first write).
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable watermark file {self.path}: {e}")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)} if isinstance(data, dict) else {}

    def all(self) -> Dict[str, str]:
        """Every stored watermark keyed by identity key."""
        return self._load()

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> bool:
        values = self._load()
        if is_regression(values.get(key), value):
            logger.warning(f"Refusing to move watermark {key} backwards to {value}")
            return False
        values[key] = value

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".watermarks-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(values, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        return True
