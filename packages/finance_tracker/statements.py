"""Statement lifecycle: get-or-create on upload, revision bumps, live counts."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from db.models.ledger import Statement, Transaction
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session

from .logging_setup import get_logger

logger = get_logger("finance_tracker.statements")


@dataclass(frozen=True, slots=True)
class StatementHandle:
    id: int
    revision_number: int
    created: bool

    @property
    def is_amendment(self) -> bool:
        return not self.created


def get_or_create_statement(
    session: Session,
    *,
    institution: str,
    month: str,
    today: date | None = None,
) -> StatementHandle:
    """Return the statement for ``(institution, month)``.

    A re-upload reuses the existing row, bumps ``revision_number`` and stamps
    ``upload_date``; a first upload starts at revision 0.
    """

    today = today or date.today()
    existing = session.execute(
        select(Statement.id, Statement.revision_number)
        .where(Statement.institution == institution, Statement.month == month)
        .order_by(Statement.id)
        .limit(1)
    ).first()

    if existing is not None:
        revision = int(existing.revision_number) + 1
        session.execute(
            update(Statement)
            .where(Statement.id == existing.id)
            .values(revision_number=revision, upload_date=today)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Re-upload of %s %s: statement %d now at revision %d",
            institution,
            month,
            existing.id,
            revision,
        )
        return StatementHandle(id=int(existing.id), revision_number=revision, created=False)

    new_id = session.execute(
        insert(Statement)
        .values(
            institution=institution,
            month=month,
            upload_date=today,
            transaction_count=0,
            revision_number=0,
        )
        .returning(Statement.id)
    ).scalar_one()
    logger.info("Created statement %d for %s %s", new_id, institution, month)
    return StatementHandle(id=int(new_id), revision_number=0, created=True)


def refresh_transaction_counts(session: Session, statement_ids: Iterable[int | None]) -> None:
    """Recompute ``transaction_count`` from live rows for each statement."""

    ids = sorted({i for i in statement_ids if i is not None})
    if not ids:
        return
    live = (
        select(func.count(Transaction.id))
        .where(Transaction.statement_id == Statement.id)
        .scalar_subquery()
    )
    session.execute(
        update(Statement)
        .where(Statement.id.in_(ids))
        .values(transaction_count=live)
        .execution_options(synchronize_session=False)
    )


def statement_count(session: Session, statement_id: int) -> int:
    return int(
        session.execute(
            select(func.count(Transaction.id)).where(Transaction.statement_id == statement_id)
        ).scalar_one()
    )


def delete_statement(session: Session, statement_id: int) -> None:
    session.execute(
        delete(Statement)
        .where(Statement.id == statement_id)
        .execution_options(synchronize_session=False)
    )
    logger.info("Removed empty statement %d", statement_id)


__all__ = [
    "StatementHandle",
    "delete_statement",
    "get_or_create_statement",
    "refresh_transaction_counts",
    "statement_count",
]
