from __future__ import annotations

from decimal import Decimal
from typing import TypedDict


class TransactionPayload(TypedDict):
    """
    Transaction as reported by the aggregator's incremental sync.

    Note: This structure mirrors Plaid's transaction object. ``amount`` is
    positive for money out and negative for money in; the sign is kept as-is.
    """
    transaction_id: str
    account_id: str | None
    amount: Decimal
    iso_currency_code: str | None
    date: str  # YYYY-MM-DD
    name: str
    merchant_name: str | None
    pending: bool
    category: list[str] | None  # e.g., ["Travel", "Airlines and Aviation Services"]


class RemovedTransaction(TypedDict):
    """Removal marker from the sync stream."""
    transaction_id: str
