"""SQLAlchemy datastore for connections and transactions."""

from __future__ import annotations

from spendsync.adapters.db.facade import DB, month_bounds
from spendsync.adapters.db.models import (
    Base,
    CategoryTotal,
    Connection,
    Transaction,
    TransactionRow,
    UpsertOutcome,
)

__all__ = [
    "DB",
    "Base",
    "CategoryTotal",
    "Connection",
    "Transaction",
    "TransactionRow",
    "UpsertOutcome",
    "month_bounds",
]
