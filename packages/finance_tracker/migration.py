"""One-time rewrite of legacy identity keys into the canonical scheme.

Legacy keys folded the address in and were cut to 20 characters, which made
unrelated transactions collide. This pass recomputes every row's canonical key
from ``(date, normalize(merchant), amount)`` and moves the row there, adding a
``-N`` suffix when the key already belongs to another row. Rows already on a
canonical key (suffixed or not) are left alone, so the pass is idempotent.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import persistence
from .identity import allocate_key, identity_key, split_key
from .logging_setup import get_logger
from .models import MigrationSummary
from .normalizers import normalize

logger = get_logger("finance_tracker.migration")


def migrate_identity_keys(session: Session) -> MigrationSummary:
    rows = persistence.all_rows(session)
    live = {r.id for r in rows}

    migrated = skipped = suffixed = 0
    errors: list[dict[str, str]] = []

    for r in rows:
        target = identity_key(r.date, normalize(r.merchant), r.amount)
        if split_key(r.id)[0] == target:
            skipped += 1
            continue

        new_id = allocate_key(target, live - {r.id})
        try:
            with session.begin_nested():
                persistence.rekey_transaction(session, r.id, new_id, r.merchant)
        except SQLAlchemyError as exc:
            logger.error("Failed to migrate %s: %s", r.id, exc)
            errors.append({"id": r.id, "error": str(exc)})
            continue

        live.discard(r.id)
        live.add(new_id)
        migrated += 1
        if new_id != target:
            suffixed += 1
        logger.debug("Migrated %s -> %s", r.id, new_id)

    logger.info(
        "Identity migration: %d total, %d migrated, %d suffixed, %d skipped, %d errors",
        len(rows),
        migrated,
        suffixed,
        skipped,
        len(errors),
    )
    return MigrationSummary(
        total=len(rows),
        migrated=migrated,
        skipped=skipped,
        suffixed=suffixed,
        errors=tuple(errors),
    )


__all__ = ["migrate_identity_keys"]
