# ruff: noqa: I001
"""Track amendment re-uploads with a per-statement revision number.

Revision ID: 0002_statement_revision
Revises: 0001_ledger_core
Create Date: 2025-10-02
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_statement_revision"
down_revision: str | None = "0001_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "statements",
        sa.Column(
            "revision_number",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
    )

    # Re-uploads are looked up by (institution, month)
    op.create_index(
        "ix_statements_institution_month",
        "statements",
        ["institution", "month"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_statements_institution_month", table_name="statements")
    op.drop_column("statements", "revision_number")
