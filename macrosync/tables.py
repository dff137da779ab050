"""Table registry for synchronized entities.

Every synchronized entity is a ``SyncTable`` member carrying a frozen
``TableSpec``. Pipelines resolve table metadata through the enum rather
than string-keyed lookups scattered across the engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import UnknownTableError

OWNER_FIELD = "user_id"

# Sorts creates for tables outside the registry after every known table
UNKNOWN_TABLE_PRIORITY = 999

# Local tables that never reach the remote store
LOCAL_ONLY_TABLES = frozenset({"settings"})


class Ownership(str, Enum):
    """How the acting identity is attached to outgoing rows."""

    NONE = "none"  # No ownership column; any user_id is stripped
    SOFT = "soft"  # Filled only when missing or a placeholder
    STRICT = "strict"  # Always overwritten with the acting identity


@dataclass(frozen=True)
class TableSpec:
    """Static metadata for one synchronized table."""

    remote_name: str
    date_field: str
    create_priority: int
    ownership: Ownership = Ownership.NONE
    public: bool = False
    # Rows without an owner are system-owned; local edits to them are never queued
    ownerless_rows_local_only: bool = False
    parent_field: Optional[str] = None
    reconcile_deletions: bool = False
    # (child table, column referencing this table's id)
    dependents: Tuple[Tuple[str, str], ...] = ()


class SyncTable(str, Enum):
    """Synchronized entity types, in pull order."""

    PROFILES = "profiles"
    FOODS = "foods"
    FOOD_INGREDIENTS = "food_ingredients"
    LOGS = "logs"
    GOALS = "goals"
    METRICS = "metrics"
    ACTIVITIES = "activities"
    ACTIVITY_LOGS = "activity_logs"
    WORKOUT_EXERCISES_DEF = "workout_exercises_def"
    WORKOUT_REST_PREFERENCES = "workout_rest_preferences"
    WORKOUT_ROUTINES = "workout_routines"
    WORKOUT_ROUTINE_ENTRIES = "workout_routine_entries"
    WORKOUT_ROUTINE_SETS = "workout_routine_sets"
    WORKOUTS = "workouts"
    WORKOUT_LOG_ENTRIES = "workout_log_entries"
    WORKOUT_SETS = "workout_sets"

    @classmethod
    def from_name(cls, name: str) -> "SyncTable":
        """Resolve a local table name, raising UnknownTableError if absent."""
        try:
            return cls(name)
        except ValueError:
            raise UnknownTableError(name) from None

    @property
    def spec(self) -> TableSpec:
        return TABLE_SPECS[self]

    @property
    def remote_name(self) -> str:
        return self.spec.remote_name

    @property
    def date_field(self) -> str:
        return self.spec.date_field

    @property
    def public(self) -> bool:
        return self.spec.public

    @property
    def ownership(self) -> Ownership:
        return self.spec.ownership

    @property
    def has_owner(self) -> bool:
        return self.spec.ownership is not Ownership.NONE


TABLE_SPECS: Dict[SyncTable, TableSpec] = {
    SyncTable.PROFILES: TableSpec("profiles", "updated_at", 1),
    SyncTable.FOODS: TableSpec(
        "foods",
        "updated_at",
        2,
        ownership=Ownership.SOFT,
        public=True,
        reconcile_deletions=True,
        dependents=(
            ("food_ingredients", "parent_food_id"),
            ("food_ingredients", "child_food_id"),
        ),
    ),
    SyncTable.FOOD_INGREDIENTS: TableSpec("food_ingredients", "created_at", 3, public=True),
    SyncTable.LOGS: TableSpec("daily_logs", "created_at", 5, ownership=Ownership.STRICT),
    SyncTable.GOALS: TableSpec("goals", "created_at", 4, ownership=Ownership.STRICT),
    SyncTable.METRICS: TableSpec("body_metrics", "created_at", 4, ownership=Ownership.STRICT),
    SyncTable.ACTIVITIES: TableSpec(
        "activities",
        "updated_at",
        5,
        ownership=Ownership.SOFT,
        public=True,
    ),
    SyncTable.ACTIVITY_LOGS: TableSpec(
        "activity_logs", "created_at", 6, ownership=Ownership.STRICT
    ),
    SyncTable.WORKOUT_EXERCISES_DEF: TableSpec(
        "workout_exercises_def",
        "updated_at",
        7,
        ownership=Ownership.SOFT,
        public=True,
        ownerless_rows_local_only=True,
    ),
    SyncTable.WORKOUT_REST_PREFERENCES: TableSpec(
        "workout_rest_preferences", "updated_at", 8, ownership=Ownership.STRICT
    ),
    SyncTable.WORKOUT_ROUTINES: TableSpec(
        "workout_routines", "updated_at", 9, ownership=Ownership.STRICT
    ),
    SyncTable.WORKOUT_ROUTINE_ENTRIES: TableSpec(
        "workout_routine_entries", "created_at", 10, ownership=Ownership.STRICT
    ),
    SyncTable.WORKOUT_ROUTINE_SETS: TableSpec("workout_routine_sets", "created_at", 11),
    SyncTable.WORKOUTS: TableSpec("workouts", "updated_at", 12, ownership=Ownership.STRICT),
    SyncTable.WORKOUT_LOG_ENTRIES: TableSpec(
        "workout_log_entries",
        "created_at",
        13,
        ownership=Ownership.STRICT,
        parent_field="workout_id",
    ),
    SyncTable.WORKOUT_SETS: TableSpec("workout_sets", "created_at", 14),
}

_missing = set(SyncTable) - set(TABLE_SPECS)
if _missing:
    raise RuntimeError(f"Table registry incomplete: {sorted(t.value for t in _missing)}")


def create_priority(table: str) -> int:
    """Dependency depth used to order queued creates (parents first)."""
    try:
        return SyncTable(table).spec.create_priority
    except ValueError:
        return UNKNOWN_TABLE_PRIORITY


def reconciled_tables() -> Tuple[SyncTable, ...]:
    """Tables whose remote deletions are detected by a full-scan sweep."""
    return tuple(t for t in SyncTable if t.spec.reconcile_deletions)
