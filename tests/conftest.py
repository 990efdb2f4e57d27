"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
import sys

from loguru import logger
import pytest

from spendsync.adapters.db.facade import DB


@pytest.fixture(autouse=True)
def _restore_loguru() -> Iterator[None]:
    """Put loguru back on its default sink after each test.

    The CLI swaps loguru's handlers for one bound to the runner's stderr,
    which is closed once the command returns.
    """
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def db() -> DB:
    """In-memory database with the schema created."""
    database = DB("sqlite:///:memory:")
    database.create_schema()
    return database
