"""Statement import: parser output in, reconciled ledger rows out.

Pipeline for one statement:

1. ``extract_statement_payload``: pull the JSON object out of the parser's raw
   text and validate the envelope.
2. Get or create the statement row for ``(institution, month)``; a re-upload
   bumps its revision.
3. Clean and validate each record; invalid records are skipped with a reason.
4. Blind-insert every valid record at its base identity key. A key collision
   is not an error: the record is held back as a possible repeat.
5. Reconcile each ``(date, normalized merchant, amount)`` tuple against its
   occurrence count in the statement, inserting held-back records at the next
   free suffix or deleting this statement's surplus rows. Rows another
   statement owns are left alone.
6. Recompute live counts for touched statements and drop a new statement that
   ended up empty.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import date
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from . import persistence
from .identity import transaction_key
from .logging_setup import get_logger
from .models import ImportSummary, ParsedStatement, ParsedTransaction, SkippedRecord
from .normalizers import clean_description
from .reconciliation import reconcile_tuple
from .statements import (
    delete_statement,
    get_or_create_statement,
    refresh_transaction_counts,
    statement_count,
)

logger = get_logger("finance_tracker.ingest")

DUPLICATE_REASON = "Duplicate transaction"


def extract_statement_payload(text: str) -> ParsedStatement:
    """Parse the outermost ``{...}`` object in ``text`` as a statement.

    Raises ``ValueError`` when no object is present, the JSON is malformed, or
    the envelope lacks ``institution``, ``month`` or a ``transactions`` list.
    """

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object found in parser output")
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ValueError(f"Parser output is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("Parser output must be a JSON object")
    try:
        return ParsedStatement.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid statement payload: {exc}") from exc


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else str(err.get("msg", "invalid"))


def _clean_record(raw: Mapping[str, Any]) -> dict[str, Any]:
    record = dict(raw)
    desc = record.get("description")
    if isinstance(desc, str):
        record["description"] = clean_description(desc.strip())
    return record


def import_statement(
    session: Session,
    statement: ParsedStatement | Mapping[str, Any],
    *,
    today: date | None = None,
) -> ImportSummary:
    """Import one parsed statement inside the caller's transaction."""

    if not isinstance(statement, ParsedStatement):
        try:
            statement = ParsedStatement.model_validate(dict(statement))
        except ValidationError as exc:
            raise ValueError(f"Invalid statement payload: {exc}") from exc

    handle = get_or_create_statement(
        session, institution=statement.institution, month=statement.month, today=today
    )

    skipped: list[SkippedRecord] = []
    occurrences: dict[str, list[ParsedTransaction]] = {}
    held_back: dict[str, list[ParsedTransaction]] = {}
    inserted: list[str] = []

    def _insert(key: str, tx: ParsedTransaction) -> bool:
        return persistence.insert_transaction(
            session,
            key=key,
            statement_id=handle.id,
            date=tx.date,
            description=tx.description,
            address=tx.address,
            amount=tx.amount,
            merchant=tx.description,
            category=tx.category,
        )

    for raw in statement.transactions:
        if not isinstance(raw, Mapping):
            skipped.append(SkippedRecord(reason="record is not an object", record={"value": raw}))
            continue
        record = _clean_record(raw)
        try:
            tx = ParsedTransaction.model_validate(record)
        except ValidationError as exc:
            skipped.append(SkippedRecord(reason=_first_error(exc), record=record))
            continue

        base = transaction_key(tx.date, tx.description, tx.amount)
        occurrences.setdefault(base, []).append(tx)
        if _insert(base, tx):
            inserted.append(base)
        else:
            held_back.setdefault(base, []).append(tx)

    deleted: list[str] = []
    touched: set[int | None] = {handle.id}
    for base, txs in occurrences.items():
        pending = held_back.get(base, [])

        def _insert_missing(key: str, n: int, pending=pending, txs=txs) -> bool:
            tx = pending[n] if n < len(pending) else txs[-1]
            return _insert(key, tx)

        added, removed, statements_hit = reconcile_tuple(
            session,
            base=base,
            required=len(txs),
            insert_row=_insert_missing,
            statement_id=handle.id,
        )
        inserted.extend(added)
        deleted.extend(removed)
        touched |= statements_hit
        # Held-back records consumed by reconciliation are no longer skips.
        for tx in pending[len(added) :]:
            skipped.append(
                SkippedRecord(reason=DUPLICATE_REASON, record=tx.model_dump(mode="json"))
            )

    refresh_transaction_counts(session, touched)

    statement_id: int | None = handle.id
    if handle.created and statement_count(session, handle.id) == 0:
        delete_statement(session, handle.id)
        statement_id = None

    status = "imported" if inserted or deleted else "already_complete"
    logger.info(
        "Imported %s %s (revision %d): %d inserted, %d deleted, %d skipped",
        statement.institution,
        statement.month,
        handle.revision_number,
        len(inserted),
        len(deleted),
        len(skipped),
    )
    return ImportSummary(
        statement_id=statement_id,
        institution=statement.institution,
        month=statement.month,
        revision_number=handle.revision_number,
        is_amendment=handle.is_amendment,
        inserted_ids=tuple(inserted),
        deleted_ids=tuple(deleted),
        skipped=tuple(skipped),
        status=status,
    )


__all__ = ["DUPLICATE_REASON", "extract_statement_payload", "import_statement"]
