from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import loguru
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from spendsync.adapters.db.facade import DB
from spendsync.adapters.db.models import TransactionRow
from spendsync.categorize.rules import Classifier
from spendsync.errors import PartialDeleteWarning, PersistenceError
from spendsync.models.transaction import TransactionPayload
from spendsync.sync.fetcher import ChangeSet

DEFAULT_CURRENCY = "USD"
_CENT = Decimal("0.01")


@dataclass
class ApplyOutcome:
    """What one reconciliation pass did to the datastore."""

    upserted: int
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: list[str] = field(default_factory=list)
    warnings: list[PartialDeleteWarning] = field(default_factory=list)


class ReconciliationLogger:
    """Handles all logging for ReconciliationWriter."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def persistence_start(self, transaction_count: int) -> None:
        """Log start of persistence phase."""
        self._logger.bind(count=transaction_count).info(
            "Persisting {} transactions to database", transaction_count
        )

    def persistence_complete(self, inserted: int, updated: int, unchanged: int) -> None:
        self._logger.bind(inserted=inserted, updated=updated, unchanged=unchanged).info(
            "Upsert complete: {} inserted, {} updated, {} unchanged",
            inserted,
            updated,
            unchanged,
        )

    def persistence_failed(self, error: Exception) -> None:
        self._logger.bind(error=str(error)).error("Transaction upsert failed: {}", error)

    def deletion_start(self, deletion_count: int) -> None:
        """Log start of deletion phase."""
        self._logger.bind(count=deletion_count).info(
            "Deleting {} removed transactions", deletion_count
        )

    def deletion_failed(self, warning: PartialDeleteWarning) -> None:
        self._logger.bind(external_ids=warning.external_ids).warning(
            "Removed transactions left in place: {}", warning.message
        )

    def row_skipped(self, external_id: str, reason: str) -> None:
        self._logger.bind(external_id=external_id).warning(
            "Skipping transaction {}: {}", external_id, reason
        )


def amount_to_cents(amount: Decimal | float | int | str) -> int:
    """Convert a signed decimal amount to integer cents, keeping the sign."""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int(value.quantize(_CENT, rounding=ROUND_HALF_UP) * 100)


class ReconciliationWriter:
    """
    Applies a ChangeSet to the datastore.

    Upserts are one all-or-nothing batch keyed by (owner_id, external_id);
    applying the same ChangeSet twice leaves the same stored rows. Removals
    are best-effort: failures are collected as warnings, not raised.
    """

    def __init__(self, db: DB, classifier: Classifier | None = None) -> None:
        self._db = db
        self._classifier = classifier or Classifier()
        self._logger = ReconciliationLogger()

    def build_row(
        self, owner_id: str, connection_id: str, txn: TransactionPayload
    ) -> TransactionRow:
        """
        Build the stored row for one aggregator transaction.

        Raises:
            ValueError: If the date or amount cannot be parsed
        """
        try:
            posted_at = date.fromisoformat(txn["date"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid date: {txn.get('date')!r}") from e
        try:
            amount_cents = amount_to_cents(txn["amount"])
        except (InvalidOperation, TypeError, ValueError) as e:
            raise ValueError(f"Invalid amount: {txn.get('amount')!r}") from e

        merchant_name = txn.get("merchant_name") or None
        return TransactionRow(
            external_id=txn["transaction_id"],
            owner_id=owner_id,
            connection_id=connection_id,
            name=txn["name"],
            merchant_name=merchant_name,
            amount_cents=amount_cents,
            currency=txn.get("iso_currency_code") or DEFAULT_CURRENCY,
            posted_at=posted_at,
            category=self._classifier.classify(
                txn["name"], merchant_name, txn.get("category") or []
            ),
            pending=bool(txn.get("pending", False)),
        )

    def apply(
        self, owner_id: str, connection_id: str, change_set: ChangeSet
    ) -> ApplyOutcome:
        """
        Upsert added/modified transactions and delete removed ones.

        Args:
            owner_id: Owner the rows belong to
            connection_id: Connection the rows came from
            change_set: Drained changes for this attempt

        Returns:
            ApplyOutcome; ``upserted`` is the number of rows written

        Raises:
            PersistenceError: If the upsert batch fails
        """
        rows: list[TransactionRow] = []
        skipped: list[str] = []
        for txn in change_set.upserts:
            try:
                rows.append(self.build_row(owner_id, connection_id, txn))
            except ValueError as e:
                external_id = txn.get("transaction_id", "")
                self._logger.row_skipped(external_id, str(e))
                skipped.append(external_id)

        outcome = ApplyOutcome(upserted=0, skipped=skipped)

        if rows:
            self._logger.persistence_start(len(rows))
            try:
                result = self._db.upsert_transactions(rows)
            except SQLAlchemyError as e:
                self._logger.persistence_failed(e)
                raise PersistenceError(f"Failed to save transactions: {e}") from e
            self._logger.persistence_complete(
                result.inserted, result.updated, result.unchanged
            )
            outcome.upserted = result.total
            outcome.inserted = result.inserted
            outcome.updated = result.updated

        if change_set.removed:
            self._delete_removed(owner_id, change_set.removed, outcome)

        return outcome

    def _delete_removed(
        self, owner_id: str, external_ids: list[str], outcome: ApplyOutcome
    ) -> None:
        self._logger.deletion_start(len(external_ids))
        try:
            outcome.deleted = self._db.delete_transactions_by_external_ids(
                external_ids, owner_id=owner_id
            )
            return
        except SQLAlchemyError as e:
            batch_error = e

        # Batch failed; fall back to per-id deletes and collect what still fails.
        failed: list[str] = []
        for external_id in external_ids:
            try:
                outcome.deleted += self._db.delete_transactions_by_external_ids(
                    [external_id], owner_id=owner_id
                )
            except SQLAlchemyError:
                failed.append(external_id)

        if failed:
            warning = PartialDeleteWarning(failed, str(batch_error))
            self._logger.deletion_failed(warning)
            outcome.warnings.append(warning)
