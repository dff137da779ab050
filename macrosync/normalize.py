"""Payload normalization and ownership rules applied before a push."""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .tables import OWNER_FIELD, Ownership, SyncTable

logger = logging.getLogger(__name__)

# Fields that only exist in the local datastore
LOCAL_ONLY_FIELDS = frozenset({"synced"})

# Owner values written by signed-out clients, replaced on first push
PLACEHOLDER_OWNERS = frozenset({"local-user", "current-user"})

_INVALID_REFERENCE_LITERALS = frozenset({"", "null", "undefined"})

CANONICAL_MEAL_TYPES = frozenset({"breakfast", "lunch", "dinner", "snack", "supplement"})
DEFAULT_MEAL_TYPE = "snack"


def strip_local_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in LOCAL_ONLY_FIELDS}


def expand_dotted_keys(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Expand ``{"a.b": 1}`` into ``{"a": {"b": 1}}``.

    Non-dotted keys are kept as-is. A non-dict value sitting on an
    intermediate path segment is replaced by a nested object.
    """
    output = dict(payload)
    for key, value in payload.items():
        if "." not in key:
            continue
        del output[key]
        parts = [p for p in key.split(".") if p]
        if not parts:
            continue
        cursor = output
        for part in parts[:-1]:
            existing = cursor.get(part)
            if not isinstance(existing, dict):
                existing = {}
                cursor[part] = existing
            cursor = existing
        cursor[parts[-1]] = value
    return output


def is_invalid_reference(value: Any) -> bool:
    """True for string references that can never resolve ("", "null", "undefined")."""
    if not isinstance(value, str):
        return False
    return value.strip().lower() in _INVALID_REFERENCE_LITERALS


def _is_placeholder_owner(value: Any) -> bool:
    return not value or value in PLACEHOLDER_OWNERS


def apply_ownership(
    table: SyncTable, payload: Dict[str, Any], user_id: Optional[str]
) -> Dict[str, Any]:
    """Attach the acting identity to a payload according to the table's ownership class.

    - Tables without an ownership column lose any ``user_id`` field.
    - Strict-owned tables always carry the acting identity.
    - Soft-owned tables keep an explicit owner and only replace missing or
      placeholder values.
    - Public foods and activities follow the soft rule, so their creator
      stays the owner; they are not turned into ownerless (global) rows.
    """
    result = dict(payload)
    if not table.has_owner:
        result.pop(OWNER_FIELD, None)
        return result

    if not user_id:
        logger.warning(f"No acting identity while preparing {table.value}; ownership unchanged")
        return result

    if table.ownership is Ownership.STRICT:
        result[OWNER_FIELD] = user_id
        return result

    if _is_placeholder_owner(result.get(OWNER_FIELD)):
        result[OWNER_FIELD] = user_id
    return result


# =============================================================================
# Meal type canonicalization (daily logs)
# =============================================================================


def infer_canonical_meal_type(value: Any) -> Optional[str]:
    """Map a free-text label onto the canonical vocabulary by substring match."""
    normalized = str(value if value is not None else "").strip().lower()
    if not normalized:
        return None
    if normalized in CANONICAL_MEAL_TYPES:
        return normalized
    if "break" in normalized:
        return "breakfast"
    if "lunch" in normalized:
        return "lunch"
    if "dinner" in normalized or "supper" in normalized:
        return "dinner"
    if "supplement" in normalized:
        return "supplement"
    if "snack" in normalized:
        return "snack"
    return None


def meal_aliases(value: Any) -> List[str]:
    """Spellings a meal id or name may appear under (lowercase, slug, _ and - joined)."""
    normalized = str(value if value is not None else "").strip().lower()
    if not normalized:
        return []
    slug = re.sub(r"[^a-z0-9]+", "-", normalized).strip("-")
    underscore = re.sub(r"\s+", "_", normalized)
    dashed = re.sub(r"\s+", "-", normalized)
    aliases: List[str] = []
    for alias in (normalized, slug, underscore, dashed):
        if alias and alias not in aliases:
            aliases.append(alias)
    return aliases


def normalize_meal_type(raw: Any, meals: Iterable[Dict[str, Any]] = ()) -> str:
    """Canonicalize a daily-log meal type.

    Falls back to the user's configured meals (matched by id, name, or
    their slug variants) and finally to ``DEFAULT_MEAL_TYPE``.
    """
    value = str(raw if raw is not None else "").strip().lower()

    inferred = infer_canonical_meal_type(value)
    if inferred:
        return inferred

    for meal in meals:
        if not isinstance(meal, dict):
            continue
        meal_id = str(meal.get("id") or "")
        name = str(meal.get("name") or "")
        if value not in set(meal_aliases(meal_id)) | set(meal_aliases(name)):
            continue
        match = infer_canonical_meal_type(name) or infer_canonical_meal_type(meal_id)
        if match:
            return match

    return DEFAULT_MEAL_TYPE
