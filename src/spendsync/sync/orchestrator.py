from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
import threading
from typing import Any
import uuid

import loguru
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from spendsync.adapters.clients.plaid import AggregatorClient
from spendsync.adapters.db.facade import DB
from spendsync.adapters.db.models import Connection
from spendsync.categorize.rules import Classifier
from spendsync.errors import (
    AuthError,
    ConnectionInactiveError,
    NotFoundError,
    PartialDeleteWarning,
    PersistenceError,
    SyncInProgressError,
)
from spendsync.sync.fetcher import PageFetcher
from spendsync.sync.writer import ReconciliationWriter


class SyncState(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    CURSOR_PERSIST = "cursor_persist"
    DONE = "done"
    ERROR = "error"


_NEXT_STATE: dict[SyncState, SyncState] = {
    SyncState.IDLE: SyncState.FETCHING,
    SyncState.FETCHING: SyncState.RECONCILING,
    SyncState.RECONCILING: SyncState.CURSOR_PERSIST,
    SyncState.CURSOR_PERSIST: SyncState.DONE,
}


@dataclass(frozen=True)
class SyncResult:
    """Summary of one completed sync attempt."""

    added: int
    modified: int
    removed: int
    total_processed: int
    warnings: tuple[PartialDeleteWarning, ...] = field(default_factory=tuple)
    skipped: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "modified": self.modified,
            "removed": self.removed,
            "total_processed": self.total_processed,
            "warnings": [w.to_dict() for w in self.warnings],
            "skipped": list(self.skipped),
        }


class SyncLogger:
    """Handles all logging for SyncOrchestrator."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def state_change(
        self, connection_id: str, old: SyncState, new: SyncState
    ) -> None:
        self._logger.bind(connection_id=connection_id, old=old, new=new).debug(
            "Sync {}: {} -> {}", connection_id, old, new
        )

    def sync_failed(
        self, connection_id: str, state: SyncState, error: Exception
    ) -> None:
        self._logger.bind(
            connection_id=connection_id, state=state, error=str(error)
        ).error("Sync {} failed while {}: {}", connection_id, state, error)

    def sync_complete(self, connection_id: str, result: SyncResult) -> None:
        self._logger.bind(
            connection_id=connection_id,
            added=result.added,
            modified=result.modified,
            removed=result.removed,
        ).info(
            "Sync {} complete: {} added, {} modified, {} removed",
            connection_id,
            result.added,
            result.modified,
            result.removed,
        )

    def synced_at_failed(self, connection_id: str, error: Exception) -> None:
        self._logger.bind(connection_id=connection_id, error=str(error)).warning(
            "Could not record last_synced_at for {}: {}", connection_id, error
        )

    def lease_busy(self, connection_id: str) -> None:
        self._logger.bind(connection_id=connection_id).warning(
            "Sync {} rejected: another attempt holds the sync lease", connection_id
        )

    def lease_release_failed(self, connection_id: str, error: Exception) -> None:
        self._logger.bind(connection_id=connection_id, error=str(error)).warning(
            "Could not release sync lease for {}; it will expire: {}",
            connection_id,
            error,
        )

    def rows_skipped(self, connection_id: str, external_ids: list[str]) -> None:
        self._logger.bind(
            connection_id=connection_id, external_ids=external_ids
        ).warning(
            "Sync {} skipped {} unreadable transaction(s)",
            connection_id,
            len(external_ids),
        )


class SyncAttempt:
    """Tracks the state machine of a single sync attempt."""

    def __init__(self, connection_id: str, sync_logger: SyncLogger) -> None:
        self.connection_id = connection_id
        self.state = SyncState.IDLE
        self._logger = sync_logger

    def advance(self, new_state: SyncState) -> None:
        """
        Move to the next state.

        Raises:
            RuntimeError: If ``new_state`` does not follow the current state
        """
        expected = _NEXT_STATE.get(self.state)
        if new_state != expected:
            raise RuntimeError(
                f"Illegal sync transition {self.state} -> {new_state}"
            )
        self._logger.state_change(self.connection_id, self.state, new_state)
        self.state = new_state

    def fail(self, error: Exception) -> None:
        self._logger.sync_failed(self.connection_id, self.state, error)
        self.state = SyncState.ERROR


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """
    Runs sync attempts for bank connections.

    Each attempt claims the connection's sync lease in the datastore, drains
    every page from the aggregator, reconciles the changes, and only then
    advances the stored cursor. The lease is shared by every process using
    the same database, so at most one attempt per connection runs at a time.
    A failure before the cursor is persisted leaves the connection exactly as
    it was, and because reconciliation is idempotent the whole attempt can
    simply be retried.
    """

    def __init__(
        self,
        client: AggregatorClient,
        db: DB,
        *,
        classifier: Classifier | None = None,
        page_size: int = 500,
        max_mutation_retries: int = 3,
        lease_seconds: float = 600.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            client: Aggregator client
            db: Datastore facade
            classifier: Categorizer for new/modified transactions
            page_size: Transactions requested per page
            max_mutation_retries: Restarts when data changes mid-pagination
            lease_seconds: How long a claimed sync lease stays valid; a
                crashed attempt blocks its connection for at most this long
            clock: Source of lease and ``last_synced_at`` timestamps
        """
        self._db = db
        self._fetcher = PageFetcher(
            client, page_size=page_size, max_mutation_retries=max_mutation_retries
        )
        self._writer = ReconciliationWriter(db, classifier)
        self._lease_seconds = lease_seconds
        self._clock = clock
        self._logger = SyncLogger()

    def sync(
        self,
        connection_id: str,
        *,
        owner_id: str | None,
        cancel_event: threading.Event | None = None,
    ) -> SyncResult:
        """
        Run one sync attempt for a connection.

        Args:
            connection_id: Connection to sync
            owner_id: Caller identity; must own the connection
            cancel_event: Cooperative cancellation, checked between pages

        Returns:
            SyncResult with added/modified/removed/total_processed counts

        Raises:
            AuthError: Missing caller identity or inactive connection
            NotFoundError: Unknown connection or not owned by the caller
            ProviderError: Aggregator failure; nothing was written
            PersistenceError: Datastore failure; cursor left unchanged
            SyncInProgressError: Another attempt holds this connection's lease
            SyncCancelledError: Cancelled before reconciliation began
        """
        if owner_id is None or not owner_id.strip():
            raise AuthError("Missing caller identity")

        lease_token = uuid.uuid4().hex
        self._claim_lease(connection_id, owner_id, lease_token)

        attempt = SyncAttempt(connection_id, self._logger)
        try:
            result = self._run(attempt, owner_id, lease_token, cancel_event)
        except Exception as e:
            attempt.fail(e)
            raise
        finally:
            self._release_lease(connection_id, owner_id, lease_token)

        self._logger.sync_complete(connection_id, result)
        return result

    def _run(
        self,
        attempt: SyncAttempt,
        owner_id: str,
        lease_token: str,
        cancel_event: threading.Event | None,
    ) -> SyncResult:
        connection = self._load_connection(attempt.connection_id, owner_id)

        attempt.advance(SyncState.FETCHING)
        change_set = self._fetcher.drain(
            connection.access_token, connection.cursor, cancel_event=cancel_event
        )

        attempt.advance(SyncState.RECONCILING)
        outcome = self._writer.apply(owner_id, connection.connection_id, change_set)
        if outcome.skipped:
            self._logger.rows_skipped(connection.connection_id, outcome.skipped)

        attempt.advance(SyncState.CURSOR_PERSIST)
        self._persist_cursor(connection, owner_id, lease_token, change_set.next_cursor)

        attempt.advance(SyncState.DONE)
        skipped = set(outcome.skipped)
        added = sum(1 for t in change_set.added if t["transaction_id"] not in skipped)
        modified = sum(
            1 for t in change_set.modified if t["transaction_id"] not in skipped
        )
        return SyncResult(
            added=added,
            modified=modified,
            removed=len(change_set.removed),
            total_processed=added + modified,
            warnings=tuple(outcome.warnings),
            skipped=tuple(outcome.skipped),
        )

    def _claim_lease(self, connection_id: str, owner_id: str, lease_token: str) -> None:
        """
        Claim the connection's sync lease.

        Raises:
            NotFoundError: Unknown connection or not owned by the caller
            SyncInProgressError: Another attempt holds an unexpired lease
            PersistenceError: The datastore could not be reached
        """
        try:
            claimed = self._db.acquire_sync_lease(
                connection_id,
                owner_id=owner_id,
                token=lease_token,
                now=self._clock(),
                lease_seconds=self._lease_seconds,
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to claim sync lease: {e}") from e
        if claimed:
            return

        if self._find_connection(connection_id, owner_id) is None:
            raise NotFoundError("Bank connection not found or access denied")
        self._logger.lease_busy(connection_id)
        raise SyncInProgressError(connection_id)

    def _release_lease(
        self, connection_id: str, owner_id: str, lease_token: str
    ) -> None:
        try:
            self._db.release_sync_lease(
                connection_id, owner_id=owner_id, token=lease_token
            )
        except SQLAlchemyError as e:
            self._logger.lease_release_failed(connection_id, e)

    def _find_connection(self, connection_id: str, owner_id: str) -> Connection | None:
        try:
            return self._db.get_connection(connection_id, owner_id=owner_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load connection: {e}") from e

    def _load_connection(self, connection_id: str, owner_id: str) -> Connection:
        connection = self._find_connection(connection_id, owner_id)
        if connection is None:
            raise NotFoundError("Bank connection not found or access denied")
        if connection.status != "active":
            raise ConnectionInactiveError(connection_id, connection.status)
        return connection

    def _persist_cursor(
        self,
        connection: Connection,
        owner_id: str,
        lease_token: str,
        cursor: str | None,
    ) -> None:
        try:
            updated = self._db.update_connection_cursor(
                connection.connection_id,
                owner_id=owner_id,
                cursor=cursor,
                lease_token=lease_token,
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist sync cursor: {e}") from e
        if updated == 0:
            raise PersistenceError(
                f"Connection {connection.connection_id} lost its sync lease "
                "before the cursor update"
            )

        try:
            self._db.update_connection_synced_at(
                connection.connection_id, owner_id=owner_id, synced_at=self._clock()
            )
        except SQLAlchemyError as e:
            self._logger.synced_at_failed(connection.connection_id, e)
