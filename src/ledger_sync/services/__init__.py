"""Sync services: anchor resolution, dedup filtering and orchestration."""

from ledger_sync.services.dedupe import filter_new, resolve_anchor
from ledger_sync.services.orchestrator import (
    RunSummary,
    SourceBinding,
    SyncOrchestrator,
    SyncResult,
    SyncStage,
)

__all__ = [
    "RunSummary",
    "SourceBinding",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStage",
    "filter_new",
    "resolve_anchor",
]
