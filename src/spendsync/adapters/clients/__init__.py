"""Aggregator clients."""

from __future__ import annotations

from spendsync.adapters.clients.plaid import (
    MUTATION_DURING_PAGINATION,
    AggregatorClient,
    PlaidClient,
    PlaidClientError,
)

__all__ = [
    "MUTATION_DURING_PAGINATION",
    "AggregatorClient",
    "PlaidClient",
    "PlaidClientError",
]
