# ruff: noqa: I001
"""Store operations over ``transactions``.

Functions here read and mutate the shared ledger tables owned by ``libs/db``.
Everything goes through Core ``select``/``insert``/``update``/``delete``
statements and returns lightweight ``Row`` objects rather than ORM instances:
reconciliation rewrites primary keys in place, and ORM identities would go
stale under it.

The caller owns the outer transaction and commits.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from sqlalchemy import Row, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.ledger import Transaction
from .identity import family_sort_key, split_key
from .logging_setup import get_logger

logger = get_logger("finance_tracker.persistence")

ROW_COLUMNS = (
    Transaction.id,
    Transaction.statement_id,
    Transaction.date,
    Transaction.description,
    Transaction.address,
    Transaction.amount,
    Transaction.merchant,
    Transaction.category,
)


def family_rows(session: Session, base: str) -> list[Row]:
    """Rows keyed ``base`` or ``base-N``, base first then by suffix."""

    stmt = select(*ROW_COLUMNS).where(
        or_(Transaction.id == base, Transaction.id.like(f"{base}-%"))
    )
    rows = [r for r in session.execute(stmt).all() if split_key(r.id)[0] == base]
    rows.sort(key=lambda r: family_sort_key(r.id))
    return rows


def rows_by_ids(session: Session, ids: Iterable[str]) -> list[Row]:
    """Rows for ``ids`` in the order the ids were given (missing ids dropped)."""

    wanted = list(dict.fromkeys(ids))
    if not wanted:
        return []
    stmt = select(*ROW_COLUMNS).where(Transaction.id.in_(wanted))
    found = {r.id: r for r in session.execute(stmt)}
    return [found[i] for i in wanted if i in found]


def rows_for_merchants(session: Session, merchants: Iterable[str]) -> list[Row]:
    names = list(dict.fromkeys(merchants))
    if not names:
        return []
    stmt = (
        select(*ROW_COLUMNS)
        .where(Transaction.merchant.in_(names))
        .order_by(Transaction.date, Transaction.id)
    )
    return list(session.execute(stmt).all())


def all_rows(session: Session) -> list[Row]:
    return list(session.execute(select(*ROW_COLUMNS).order_by(Transaction.id)).all())


def existing_ids(session: Session, ids: Iterable[str]) -> set[str]:
    wanted = list(set(ids))
    if not wanted:
        return set()
    return set(session.execute(select(Transaction.id).where(Transaction.id.in_(wanted))).scalars())


def distinct_merchants(session: Session) -> list[str]:
    stmt = select(Transaction.merchant).distinct().order_by(Transaction.merchant)
    return [m for m in session.execute(stmt).scalars() if m]


def merchant_history(session: Session) -> dict[str, int]:
    """Live transaction count per merchant spelling."""

    stmt = select(Transaction.merchant, func.count()).group_by(Transaction.merchant)
    return {m: int(n) for m, n in session.execute(stmt).all()}


def date_amount_collisions(session: Session) -> list[tuple[str, Decimal]]:
    """``(date, amount)`` pairs that carry more than one merchant spelling."""

    stmt = (
        select(Transaction.date, Transaction.amount)
        .group_by(Transaction.date, Transaction.amount)
        .having(func.count(Transaction.merchant.distinct()) > 1)
        .order_by(Transaction.date, Transaction.amount)
    )
    return [(d, a) for d, a in session.execute(stmt).all()]


def rows_for_date_amount(session: Session, date: str, amount: Decimal) -> list[Row]:
    stmt = (
        select(*ROW_COLUMNS)
        .where(Transaction.date == date, Transaction.amount == amount)
        .order_by(Transaction.merchant, Transaction.id)
    )
    return list(session.execute(stmt).all())


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def insert_transaction(
    session: Session,
    *,
    key: str,
    statement_id: int | None,
    date: str,
    description: str,
    address: str | None,
    amount: Decimal,
    merchant: str,
    category: str,
) -> bool:
    """Blind insert at ``key``; ``False`` when the key is already taken.

    The insert runs inside a SAVEPOINT so a primary-key violation only rolls
    back this row.
    """

    values = {
        "id": key,
        "statement_id": statement_id,
        "date": date,
        "description": description,
        "address": address,
        "amount": amount,
        "merchant": merchant,
        "category": category,
    }
    try:
        with session.begin_nested():
            session.execute(insert(Transaction).values(**values))
    except IntegrityError:
        logger.debug("Key %s already present; insert skipped", key)
        return False
    return True


def delete_transactions(session: Session, ids: Sequence[str]) -> int:
    if not ids:
        return 0
    result = session.execute(
        delete(Transaction)
        .where(Transaction.id.in_(list(ids)))
        .execution_options(synchronize_session=False)
    )
    logger.debug("Deleted %d transactions", result.rowcount)
    return int(result.rowcount or 0)


def rekey_transaction(session: Session, old_id: str, new_id: str, merchant: str) -> int:
    """Move a row to ``new_id`` and set its merchant (``old_id == new_id`` renames)."""

    values: dict[str, str] = {"merchant": merchant}
    if new_id != old_id:
        values["id"] = new_id
    result = session.execute(
        update(Transaction)
        .where(Transaction.id == old_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


__all__ = [
    "ROW_COLUMNS",
    "all_rows",
    "date_amount_collisions",
    "delete_transactions",
    "distinct_merchants",
    "existing_ids",
    "family_rows",
    "insert_transaction",
    "merchant_history",
    "rekey_transaction",
    "rows_by_ids",
    "rows_for_date_amount",
    "rows_for_merchants",
]
