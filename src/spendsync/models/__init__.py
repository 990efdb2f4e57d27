"""Aggregator payload types."""

from __future__ import annotations

from spendsync.models.transaction import RemovedTransaction, TransactionPayload

__all__ = [
    "RemovedTransaction",
    "TransactionPayload",
]
