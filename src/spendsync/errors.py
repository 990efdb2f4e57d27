"""Error taxonomy for sync attempts.

Every error carries a short ``kind`` so callers on any transport can report
failures as ``{"kind": ..., "message": ...}`` pairs.
"""

from __future__ import annotations

from typing import ClassVar


class SyncError(Exception):
    """Base error for sync failures."""

    kind: ClassVar[str] = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class AuthError(SyncError):
    """Missing or invalid caller identity or credential. Not retried."""

    kind = "auth"


class ConnectionInactiveError(AuthError):
    """Connection is flagged as errored or revoked and needs re-authorization."""

    def __init__(self, connection_id: str, status: str) -> None:
        super().__init__(
            f"Connection {connection_id} is {status}; re-authorize before syncing"
        )
        self.connection_id = connection_id
        self.status = status


class NotFoundError(SyncError):
    """Unknown connection, or one owned by somebody else."""

    kind = "not_found"


class ProviderError(SyncError):
    """Aggregator call failed. Nothing was written; the whole sync may be retried."""

    kind = "provider"

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class PersistenceError(SyncError):
    """Datastore write failed. Reconciliation is idempotent so a retry is safe."""

    kind = "persistence"


class SyncInProgressError(SyncError):
    """Another sync attempt holds the sync lease for this connection."""

    kind = "conflict"

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"A sync is already running for connection {connection_id}")
        self.connection_id = connection_id


class SyncCancelledError(SyncError):
    """Attempt was cancelled between pages. No state was written."""

    kind = "cancelled"


class PartialDeleteWarning(SyncError):
    """Some removed transactions could not be deleted locally.

    Collected on the sync result and logged; never raised out of a sync.
    """

    kind = "partial_delete"

    def __init__(self, external_ids: list[str], reason: str) -> None:
        super().__init__(
            f"Failed to delete {len(external_ids)} removed transaction(s): {reason}"
        )
        self.external_ids = list(external_ids)
        self.reason = reason
