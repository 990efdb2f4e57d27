from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, TypedDict

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

ConnectionStatus = Literal["active", "error", "revoked"]
CONNECTION_STATUSES: tuple[ConnectionStatus, ...] = ("active", "error", "revoked")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class Connection(Base):
    """Bank connection holding the aggregator credential and sync cursor."""

    __tablename__ = "bank_connections"

    connection_id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    institution_name: Mapped[str | None] = mapped_column(String, nullable=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'active'")
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    # Held by the running sync attempt; claimable once NULL or expired.
    sync_lease_token: Mapped[str | None] = mapped_column(String, nullable=True)
    sync_lease_until: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    transactions: Mapped[list[Transaction]] = relationship(
        "Transaction", back_populates="connection", cascade="all, delete-orphan"
    )


class Transaction(Base):
    """Reconciled transaction. One row per (owner_id, external_id)."""

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "owner_id", "external_id", name="uq_transactions_owner_external"
        ),
        Index("idx_transactions_owner_posted", "owner_id", "posted_at"),
    )

    transaction_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    owner_id: Mapped[str] = mapped_column(String, nullable=False)
    connection_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("bank_connections.connection_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    merchant_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    posted_at: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'Uncategorized'")
    )
    pending: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("FALSE")
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    connection: Mapped[Connection] = relationship(
        "Connection", back_populates="transactions"
    )

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_cents) / 100


class TransactionRow(TypedDict):
    """Column values for one upserted transaction."""

    external_id: str
    owner_id: str
    connection_id: str
    name: str
    merchant_name: str | None
    amount_cents: int
    currency: str
    posted_at: date
    category: str
    pending: bool


# Columns overwritten when an existing row is upserted again.
MUTABLE_TRANSACTION_FIELDS: tuple[str, ...] = (
    "connection_id",
    "name",
    "merchant_name",
    "amount_cents",
    "currency",
    "posted_at",
    "category",
    "pending",
)


@dataclass
class UpsertOutcome:
    inserted: int
    updated: int
    unchanged: int

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.unchanged


@dataclass
class CategoryTotal:
    category: str
    total_cents: int
