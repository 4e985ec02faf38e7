from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Uploads: statements
# ---------------------------


class Statement(Base):
    __tablename__ = "statements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    institution: Mapped[str] = mapped_column(Text, nullable=False)
    # Free-form label as returned by the statement parser (e.g. "September 2025").
    month: Mapped[str] = mapped_column(Text, nullable=False)
    upload_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Must equal the number of live transactions referencing this row. Kept in
    # sync by ``finance_tracker.statements.refresh_transaction_counts``.
    transaction_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    # Incremented on every re-upload of the same (institution, month).
    revision_number: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (Index("ix_statements_institution_month", "institution", "month"),)


# ---------------------------
# Core: transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "transactions"

    # Deterministic identity key derived from (date, normalized merchant,
    # amount); see ``finance_tracker.identity``. Distinct logical records that
    # share a base key are stored as ``<base>-1``, ``<base>-2``, ...
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    statement_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("statements.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Stored exactly as received (MM/DD/YYYY) because the identity key encodes
    # the raw string.
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        Index("ix_transactions_merchant", "merchant"),
        Index("ix_transactions_date_amount", "date", "amount"),
    )


__all__ = [
    "Base",
    "Statement",
    "Transaction",
]
