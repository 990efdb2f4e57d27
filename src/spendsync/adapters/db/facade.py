from __future__ import annotations

import calendar
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any
import uuid

from sqlalchemy import create_engine, func, or_
from sqlalchemy.orm import (
    Query,
    Session,
    sessionmaker,
)

from spendsync.adapters.db.models import (
    CONNECTION_STATUSES,
    MUTABLE_TRANSACTION_FIELDS,
    Base,
    CategoryTotal,
    Connection,
    Transaction,
    TransactionRow,
    UpsertOutcome,
)

# Keeps IN (...) lists under SQLite's bound-parameter limit.
_IN_CHUNK_SIZE = 500


def _chunks(values: Sequence[str], size: int = _IN_CHUNK_SIZE) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield list(values[start : start + size])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_bounds(month: str) -> tuple[date, date]:
    """Return the first and last day of a ``YYYY-MM`` month.

    Raises:
        ValueError: If month is not in YYYY-MM form
    """
    try:
        year_str, month_str = month.split("-")
        year, mon = int(year_str), int(month_str)
        last_day = calendar.monthrange(year, mon)[1]
    except ValueError as e:
        raise ValueError(f"Invalid month {month!r}; expected YYYY-MM") from e
    return date(year, mon, 1), date(year, mon, last_day)


class DB:
    """Database service layer for connections and reconciled transactions."""

    def __init__(self, url: str, *, timeout_seconds: float = 30.0) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///spendsync.db")
            timeout_seconds: Busy timeout applied to SQLite connections
        """
        self._url = url
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["timeout"] = timeout_seconds
        self._engine = create_engine(url, echo=False, connect_args=connect_args)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @property
    def url(self) -> str:
        return self._url

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    # Connections ---------------------------------------------------------

    def save_connection(
        self,
        *,
        owner_id: str,
        access_token: str,
        institution_name: str | None = None,
        connection_id: str | None = None,
    ) -> Connection:
        """Save or update a bank connection.

        Args:
            owner_id: Owner identity
            access_token: Aggregator access credential
            institution_name: Optional institution label
            connection_id: Optional explicit id (a UUID is generated otherwise)

        Returns:
            Created or updated Connection instance
        """
        with self.session() as session:  # type: Session
            conn = None
            if connection_id is not None:
                conn = (
                    session.query(Connection)
                    .filter_by(connection_id=connection_id, owner_id=owner_id)
                    .first()
                )
            if conn is None:
                conn = Connection(
                    connection_id=connection_id or str(uuid.uuid4()),
                    owner_id=owner_id,
                    access_token=access_token,
                    institution_name=institution_name,
                    status="active",
                )
                session.add(conn)
            else:
                conn.access_token = access_token
                conn.institution_name = institution_name
                conn.updated_at = _utcnow()
            session.flush()
            session.refresh(conn)
            session.expunge(conn)
            return conn

    def get_connection(self, connection_id: str, *, owner_id: str) -> Connection | None:
        """Retrieve a connection by id, scoped to its owner.

        Returns:
            Connection instance or None if absent or owned by someone else
        """
        with self.session() as session:  # type: Session
            conn = (
                session.query(Connection)
                .filter_by(connection_id=connection_id, owner_id=owner_id)
                .first()
            )
            if conn:
                session.expunge(conn)
            return conn

    def _update_connection(
        self,
        connection_id: str,
        owner_id: str,
        values: dict[str, Any],
        *,
        lease_token: str | None = None,
    ) -> int:
        with self.session() as session:  # type: Session
            query = session.query(Connection).filter(
                Connection.connection_id == connection_id,
                Connection.owner_id == owner_id,
            )
            if lease_token is not None:
                query = query.filter(Connection.sync_lease_token == lease_token)
            return query.update(
                {**values, "updated_at": _utcnow()},
                synchronize_session=False,
            )

    def update_connection_cursor(
        self,
        connection_id: str,
        *,
        owner_id: str,
        cursor: str | None,
        lease_token: str | None = None,
    ) -> int:
        """Persist a new sync cursor. Returns the number of rows updated.

        When ``lease_token`` is given the update only applies while that
        token still holds the connection's sync lease.
        """
        return self._update_connection(
            connection_id, owner_id, {"cursor": cursor}, lease_token=lease_token
        )

    def acquire_sync_lease(
        self,
        connection_id: str,
        *,
        owner_id: str,
        token: str,
        now: datetime,
        lease_seconds: float,
    ) -> bool:
        """Claim the connection's sync lease for ``lease_seconds``.

        The claim is a single conditional UPDATE, so of any number of callers
        sharing the database (threads or processes) at most one wins. A lease
        whose expiry has passed can be taken over.

        Returns:
            True if ``token`` now holds the lease
        """
        with self.session() as session:  # type: Session
            claimed = (
                session.query(Connection)
                .filter(
                    Connection.connection_id == connection_id,
                    Connection.owner_id == owner_id,
                    or_(
                        Connection.sync_lease_until.is_(None),
                        Connection.sync_lease_until < now,
                    ),
                )
                .update(
                    {
                        "sync_lease_token": token,
                        "sync_lease_until": now + timedelta(seconds=lease_seconds),
                    },
                    synchronize_session=False,
                )
            )
        return claimed == 1

    def release_sync_lease(
        self, connection_id: str, *, owner_id: str, token: str
    ) -> int:
        """Release the lease if ``token`` still holds it. Returns rows updated."""
        with self.session() as session:  # type: Session
            return (
                session.query(Connection)
                .filter(
                    Connection.connection_id == connection_id,
                    Connection.owner_id == owner_id,
                    Connection.sync_lease_token == token,
                )
                .update(
                    {"sync_lease_token": None, "sync_lease_until": None},
                    synchronize_session=False,
                )
            )

    def update_connection_synced_at(
        self, connection_id: str, *, owner_id: str, synced_at: datetime
    ) -> int:
        """Record when the connection last synced. Returns rows updated."""
        return self._update_connection(
            connection_id, owner_id, {"last_synced_at": synced_at}
        )

    def set_connection_status(
        self, connection_id: str, *, owner_id: str, status: str
    ) -> int:
        """Set the connection status (active, error or revoked).

        Raises:
            ValueError: If status is not a known connection status
        """
        if status not in CONNECTION_STATUSES:
            raise ValueError(
                f"Invalid status {status!r}; expected one of {CONNECTION_STATUSES}"
            )
        return self._update_connection(connection_id, owner_id, {"status": status})

    # Transactions --------------------------------------------------------

    def upsert_transactions(self, rows: Sequence[TransactionRow]) -> UpsertOutcome:
        """Insert or overwrite transactions keyed by (owner_id, external_id).

        All rows are written in one session, so the batch commits or rolls
        back as a whole. When a key repeats inside ``rows`` the last row wins.
        Rows whose stored values already match are left untouched.

        Args:
            rows: Transaction column values

        Returns:
            UpsertOutcome with inserted/updated/unchanged counts
        """
        latest: dict[tuple[str, str], TransactionRow] = {}
        for row in rows:
            latest[(row["owner_id"], row["external_id"])] = row

        if not latest:
            return UpsertOutcome(inserted=0, updated=0, unchanged=0)

        ids_by_owner: dict[str, list[str]] = {}
        for owner_id, external_id in latest:
            ids_by_owner.setdefault(owner_id, []).append(external_id)

        inserted = 0
        updated = 0
        unchanged = 0

        with self.session() as session:  # type: Session
            existing: dict[tuple[str, str], Transaction] = {}
            for owner_id, external_ids in ids_by_owner.items():
                for chunk in _chunks(external_ids):
                    found = (
                        session.query(Transaction)
                        .filter(
                            Transaction.owner_id == owner_id,
                            Transaction.external_id.in_(chunk),
                        )
                        .all()
                    )
                    for txn in found:
                        existing[(txn.owner_id, txn.external_id)] = txn

            now = _utcnow()
            for key, row in latest.items():
                current = existing.get(key)
                if current is None:
                    session.add(Transaction(**row))
                    inserted += 1
                    continue

                changed = False
                for field in MUTABLE_TRANSACTION_FIELDS:
                    value = row[field]  # type: ignore[literal-required]
                    if getattr(current, field) != value:
                        setattr(current, field, value)
                        changed = True
                if changed:
                    current.updated_at = now
                    updated += 1
                else:
                    unchanged += 1

            session.flush()

        return UpsertOutcome(inserted=inserted, updated=updated, unchanged=unchanged)

    def delete_transactions_by_external_ids(
        self,
        external_ids: Sequence[str],
        *,
        owner_id: str,
    ) -> int:
        """Delete transactions by their external IDs, scoped to one owner.

        Returns:
            Number of transactions deleted
        """
        if not external_ids:
            return 0

        deleted = 0
        with self.session() as session:  # type: Session
            for chunk in _chunks(list(external_ids)):
                deleted += (
                    session.query(Transaction)
                    .filter(
                        Transaction.owner_id == owner_id,
                        Transaction.external_id.in_(chunk),
                    )
                    .delete(synchronize_session=False)
                )
        return deleted

    def get_transaction(self, external_id: str, *, owner_id: str) -> Transaction | None:
        with self.session() as session:  # type: Session
            txn = (
                session.query(Transaction)
                .filter_by(external_id=external_id, owner_id=owner_id)
                .first()
            )
            if txn:
                session.expunge(txn)
            return txn

    def count_transactions(self, *, owner_id: str | None = None) -> int:
        with self.session() as session:  # type: Session
            query = session.query(func.count(Transaction.transaction_id))
            if owner_id is not None:
                query = query.filter(Transaction.owner_id == owner_id)
            return int(query.scalar() or 0)

    def list_transactions(
        self,
        *,
        owner_id: str,
        connection_id: str | None = None,
        month: str | None = None,
        category: str | None = None,
        search: str | None = None,
        limit: int = 100,
    ) -> list[Transaction]:
        """List an owner's transactions, newest first.

        Args:
            owner_id: Owner identity
            connection_id: Optional connection filter
            month: Optional ``YYYY-MM`` filter on posted date
            category: Optional exact category filter
            search: Optional case-insensitive match on name or merchant name
            limit: Maximum rows returned
        """
        with self.session() as session:  # type: Session
            query: Query[Transaction] = session.query(Transaction).filter(
                Transaction.owner_id == owner_id
            )
            if connection_id is not None:
                query = query.filter(Transaction.connection_id == connection_id)
            if month is not None:
                start, end = month_bounds(month)
                query = query.filter(
                    Transaction.posted_at >= start, Transaction.posted_at <= end
                )
            if category is not None:
                query = query.filter(Transaction.category == category)
            if search:
                pattern = f"%{search}%"
                query = query.filter(
                    or_(
                        Transaction.name.ilike(pattern),
                        Transaction.merchant_name.ilike(pattern),
                    )
                )
            txns = (
                query.order_by(
                    Transaction.posted_at.desc(), Transaction.transaction_id.desc()
                )
                .limit(limit)
                .all()
            )
            for txn in txns:
                session.expunge(txn)
            return txns

    def spending_by_category(self, *, owner_id: str, month: str) -> list[CategoryTotal]:
        """Sum posted (non-pending) amounts per category for a month.

        Returns:
            CategoryTotal rows sorted by highest total first
        """
        start, end = month_bounds(month)
        with self.session() as session:  # type: Session
            total = func.sum(Transaction.amount_cents)
            rows = (
                session.query(Transaction.category, total)
                .filter(
                    Transaction.owner_id == owner_id,
                    Transaction.posted_at >= start,
                    Transaction.posted_at <= end,
                    ~Transaction.pending,
                )
                .group_by(Transaction.category)
                .order_by(total.desc(), Transaction.category)
                .all()
            )
            return [
                CategoryTotal(category=category, total_cents=int(cents or 0))
                for category, cents in rows
            ]

    def total_spending(self, *, owner_id: str, month: str) -> int:
        """Total money out for a month in cents (positive category totals only)."""
        return sum(
            row.total_cents
            for row in self.spending_by_category(owner_id=owner_id, month=month)
            if row.total_cents > 0
        )
