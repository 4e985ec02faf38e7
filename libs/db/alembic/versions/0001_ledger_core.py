# ruff: noqa: I001
"""Ledger core tables: statements and transactions.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2025-09-14
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "statements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("institution", sa.Text(), nullable=False),
        sa.Column("month", sa.Text(), nullable=False),
        sa.Column("upload_date", sa.Date(), nullable=False),
        sa.Column(
            "transaction_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    # Primary key is the deterministic identity key (not a surrogate), so
    # re-importing the same logical transaction collides on insert.
    op.create_table(
        "transactions",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column(
            "statement_id",
            sa.Integer(),
            sa.ForeignKey("statements.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_transactions_merchant", "transactions", ["merchant"], unique=False)
    op.create_index(
        "ix_transactions_date_amount", "transactions", ["date", "amount"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_transactions_date_amount", table_name="transactions")
    op.drop_index("ix_transactions_merchant", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("statements")
