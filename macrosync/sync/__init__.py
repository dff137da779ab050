"""Sync engine: push, pull, reconciliation and orchestration."""

from .orchestrator import SyncOrchestrator
from .pull import PullPipeline
from .push import PushPipeline
from .reconcile import ReconciliationSweep, find_stale_ids

__all__ = [
    "PullPipeline",
    "PushPipeline",
    "ReconciliationSweep",
    "SyncOrchestrator",
    "find_stale_ids",
]
