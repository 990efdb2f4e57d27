"""Incremental sync pipeline: fetch, classify, reconcile, advance cursor."""

from spendsync.sync.fetcher import ChangeSet, PageFetcher
from spendsync.sync.orchestrator import SyncOrchestrator, SyncResult, SyncState
from spendsync.sync.writer import ApplyOutcome, ReconciliationWriter

__all__ = [
    "ApplyOutcome",
    "ChangeSet",
    "PageFetcher",
    "ReconciliationWriter",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
]
