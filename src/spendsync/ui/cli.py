from __future__ import annotations

import json
import sys
from typing import Any, NoReturn

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table
import typer

from spendsync.adapters.clients.plaid import PlaidClient
from spendsync.adapters.db.facade import DB
from spendsync.categorize.loader import CategoryRulesLoader
from spendsync.categorize.rules import Classifier
from spendsync.core.config import SyncConfig, load_sync_config_from_env
from spendsync.core.money import format_amount
from spendsync.errors import SyncError
from spendsync.sync.orchestrator import SyncOrchestrator

# Load environment variables from .env
load_dotenv(override=False)

app = typer.Typer(
    help="spendsync: bank transaction sync and categorization.",
    no_args_is_help=True,
)

OWNER_OPTION = typer.Option(
    None,
    "--owner",
    envvar="SPENDSYNC_OWNER_ID",
    help="Caller identity (owner of the connection)",
)


def configure_logging(level: str) -> None:
    """Send loguru output to stderr; stdout is reserved for command results."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}",
        level=level,
    )


def _emit(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload))


def _fail(payload: dict[str, str]) -> NoReturn:
    _emit(payload)
    raise typer.Exit(code=1)


def _config(ctx: typer.Context) -> SyncConfig:
    return ctx.obj  # type: ignore[no-any-return]


def _open_db(config: SyncConfig) -> DB:
    db = DB(config.database_url, timeout_seconds=config.request_timeout_seconds)
    db.create_schema()
    return db


def _require_owner(owner: str | None) -> str:
    if owner is None or not owner.strip():
        _fail({"kind": "auth", "message": "Missing caller identity (--owner)"})
    return owner


def build_classifier(config: SyncConfig) -> Classifier:
    if config.rules_path is None:
        return Classifier()
    return Classifier(CategoryRulesLoader(config.rules_path).load())


def build_orchestrator(config: SyncConfig, db: DB) -> SyncOrchestrator:
    client = PlaidClient.from_env(timeout_seconds=config.request_timeout_seconds)
    return SyncOrchestrator(
        client,
        db,
        classifier=build_classifier(config),
        page_size=config.page_size,
        lease_seconds=config.lease_seconds,
    )


@app.callback()
def main_callback(ctx: typer.Context) -> None:
    """Load configuration and set up logging for every command."""
    try:
        config = load_sync_config_from_env()
    except ValueError as e:
        _fail({"kind": "config", "message": str(e)})
    configure_logging(config.log_level)
    ctx.obj = config


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """Create the database tables."""
    db = _open_db(_config(ctx))
    _emit({"status": "ok", "database_url": db.url})


@app.command("add-connection")
def add_connection(
    ctx: typer.Context,
    access_token: str = typer.Option(..., help="Aggregator access token"),
    institution: str | None = typer.Option(None, help="Institution label"),
    connection_id: str | None = typer.Option(None, help="Explicit connection id"),
    owner: str | None = OWNER_OPTION,
) -> None:
    """Register a bank connection that already holds a valid access token."""
    owner_id = _require_owner(owner)
    db = _open_db(_config(ctx))
    conn = db.save_connection(
        owner_id=owner_id,
        access_token=access_token,
        institution_name=institution,
        connection_id=connection_id,
    )
    _emit({"connection_id": conn.connection_id, "status": conn.status})


@app.command("sync")
def sync(
    ctx: typer.Context,
    connection_id: str = typer.Argument(..., help="Connection to sync"),
    owner: str | None = OWNER_OPTION,
) -> None:
    """Sync one connection and print the result summary as JSON."""
    config = _config(ctx)
    try:
        owner_id = _require_owner(owner)
        db = _open_db(config)
        orchestrator = build_orchestrator(config, db)
        result = orchestrator.sync(connection_id, owner_id=owner_id)
    except SyncError as e:
        _fail(e.to_dict())
    except ValueError as e:
        _fail({"kind": "config", "message": str(e)})
    _emit(result.to_dict())


@app.command("classify")
def classify_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Transaction name"),
    merchant: str | None = typer.Option(None, help="Merchant name"),
    hint: list[str] | None = typer.Option(  # noqa: B008
        None, help="Provider category hint (repeatable, in order)"
    ),
) -> None:
    """Show which category a transaction would be assigned."""
    try:
        classifier = build_classifier(_config(ctx))
    except ValueError as e:
        _fail({"kind": "config", "message": str(e)})
    _emit({"category": classifier.classify(name, merchant, hint or [])})


@app.command("transactions")
def transactions(
    ctx: typer.Context,
    owner: str | None = OWNER_OPTION,
    month: str | None = typer.Option(None, help="Month filter, YYYY-MM"),
    category: str | None = typer.Option(None, help="Category filter"),
    search: str | None = typer.Option(None, help="Search name or merchant"),
    limit: int = typer.Option(100, help="Maximum rows"),
) -> None:
    """List stored transactions, newest first."""
    owner_id = _require_owner(owner)
    db = _open_db(_config(ctx))
    try:
        rows = db.list_transactions(
            owner_id=owner_id,
            month=month,
            category=category,
            search=search,
            limit=limit,
        )
    except ValueError as e:
        _fail({"kind": "invalid", "message": str(e)})

    table = Table(title="Transactions")
    table.add_column("Date")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Amount", justify="right")
    table.add_column("Pending")
    for txn in rows:
        table.add_row(
            txn.posted_at.isoformat(),
            txn.merchant_name or txn.name,
            txn.category,
            format_amount(txn.amount_cents, txn.currency),
            "yes" if txn.pending else "",
        )
    Console().print(table)


@app.command("summary")
def summary(
    ctx: typer.Context,
    month: str = typer.Option(..., help="Month, YYYY-MM"),
    owner: str | None = OWNER_OPTION,
) -> None:
    """Show posted spending per category for a month."""
    owner_id = _require_owner(owner)
    db = _open_db(_config(ctx))
    try:
        totals = db.spending_by_category(owner_id=owner_id, month=month)
    except ValueError as e:
        _fail({"kind": "invalid", "message": str(e)})

    table = Table(title=f"Spending {month}")
    table.add_column("Category")
    table.add_column("Total", justify="right")
    for row in totals:
        table.add_row(row.category, format_amount(row.total_cents))
    spent = sum(row.total_cents for row in totals if row.total_cents > 0)
    table.add_row("Total spent", format_amount(spent), end_section=True)
    Console().print(table)


if __name__ == "__main__":
    app()
