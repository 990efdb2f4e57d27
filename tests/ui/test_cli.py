"""Tests for the spendsync command line."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from spendsync.adapters.clients.plaid import PlaidClient
from spendsync.ui.cli import app
from tests.fixtures.aggregator import (
    MockAggregatorClient,
    create_page,
    create_test_transaction,
)

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPENDSYNC_DATABASE_URL", f"sqlite:///{tmp_path}/spendsync.db")
    monkeypatch.setenv("SPENDSYNC_LOG_LEVEL", "CRITICAL")
    for name in (
        "SPENDSYNC_OWNER_ID",
        "SPENDSYNC_PAGE_SIZE",
        "SPENDSYNC_REQUEST_TIMEOUT",
        "SPENDSYNC_LEASE_SECONDS",
        "SPENDSYNC_RULES_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_client(monkeypatch: pytest.MonkeyPatch) -> MockAggregatorClient:
    client = MockAggregatorClient(
        pages=[
            create_page(
                added=[
                    create_test_transaction(
                        transaction_id="t1",
                        name="Shell Gas",
                        merchant_name="Shell",
                        amount="42.10",
                        date="2024-03-05",
                    ),
                    create_test_transaction(
                        transaction_id="t2",
                        name="Starbucks",
                        amount="4.50",
                        date="2024-03-06",
                        pending=True,
                    ),
                ],
                next_cursor="c1",
            )
        ]
    )
    monkeypatch.setattr(PlaidClient, "from_env", lambda **kwargs: client)
    return client


def invoke_json(*args: str) -> tuple[int, dict[str, Any]]:
    result = runner.invoke(app, list(args))
    return result.exit_code, json.loads(result.stdout.strip().splitlines()[-1])


def add_connection() -> None:
    exit_code, payload = invoke_json(
        "add-connection",
        "--access-token",
        "tok-1",
        "--connection-id",
        "conn_1",
        "--owner",
        "user_1",
    )
    assert exit_code == 0
    assert payload == {"connection_id": "conn_1", "status": "active"}


def test_init_db() -> None:
    exit_code, payload = invoke_json("init-db")

    assert exit_code == 0
    assert payload["status"] == "ok"


def test_sync_prints_result_summary(mock_client: MockAggregatorClient) -> None:
    # setup
    add_connection()

    # act
    exit_code, payload = invoke_json("sync", "conn_1", "--owner", "user_1")

    # assert
    assert exit_code == 0
    assert payload == {
        "added": 2,
        "modified": 0,
        "removed": 0,
        "total_processed": 2,
        "warnings": [],
        "skipped": [],
    }
    assert mock_client.tokens_used == ["tok-1"]


def test_sync_reads_owner_from_env(
    mock_client: MockAggregatorClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    add_connection()
    monkeypatch.setenv("SPENDSYNC_OWNER_ID", "user_1")

    exit_code, payload = invoke_json("sync", "conn_1")

    assert exit_code == 0
    assert payload["added"] == 2


def test_sync_without_owner_is_an_auth_error(mock_client: MockAggregatorClient) -> None:
    exit_code, payload = invoke_json("sync", "conn_1")

    assert exit_code == 1
    assert payload["kind"] == "auth"
    assert mock_client.call_count == 0


def test_sync_unknown_connection(mock_client: MockAggregatorClient) -> None:
    exit_code, payload = invoke_json("sync", "missing", "--owner", "user_1")

    assert exit_code == 1
    assert payload["kind"] == "not_found"


def test_invalid_config_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPENDSYNC_PAGE_SIZE", "0")

    exit_code, payload = invoke_json("init-db")

    assert exit_code == 1
    assert payload["kind"] == "config"


@pytest.mark.parametrize(
    ("args", "expected"),
    [
        (["Shell Gas"], "Transportation"),
        (["UBER EATS ORDER"], "Food"),
        (["Acme", "--hint", "Shops"], "Shopping"),
        (["Acme"], "Uncategorized"),
    ],
)
def test_classify(args: list[str], expected: str) -> None:
    exit_code, payload = invoke_json("classify", *args)

    assert exit_code == 0
    assert payload == {"category": expected}


def test_classify_with_custom_rules_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text(
        "rules:\n  - category: Education\n    patterns: [bookshop]\n"
    )
    monkeypatch.setenv("SPENDSYNC_RULES_PATH", str(rules_file))

    exit_code, payload = invoke_json("classify", "Campus Bookshop")

    assert exit_code == 0
    assert payload == {"category": "Education"}


def test_transactions_and_summary_tables(mock_client: MockAggregatorClient) -> None:
    # setup
    add_connection()
    runner.invoke(app, ["sync", "conn_1", "--owner", "user_1"])

    # act
    listing = runner.invoke(app, ["transactions", "--owner", "user_1"])
    summary = runner.invoke(
        app, ["summary", "--month", "2024-03", "--owner", "user_1"]
    )

    # assert
    assert listing.exit_code == 0
    assert "Transportation" in listing.stdout
    assert "$42.10" in listing.stdout
    assert summary.exit_code == 0
    assert "Total spent" in summary.stdout
    assert "$42.10" in summary.stdout
    assert "$4.50" not in summary.stdout


def test_summary_rejects_bad_month() -> None:
    exit_code, payload = invoke_json(
        "summary", "--month", "March", "--owner", "user_1"
    )

    assert exit_code == 1
    assert payload["kind"] == "invalid"
