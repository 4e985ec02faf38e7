"""Count-preserving reconciliation of identity-key families.

Invariant: after reconciliation, the number of live rows for a
``(date, normalized merchant, amount)`` tuple equals the number of times the
authoritative source lists it. A legitimately repeated charge is never
dropped and a stale duplicate is never left behind.

Two entry points:

- ``plan_tuple`` / ``reconcile_tuple``: statement import. The source count is
  the statement's occurrence count for the tuple; missing rows are inserted at
  the next free suffix and the importing statement's surplus rows (highest
  suffixes first) deleted. Other statements' repeats are never touched.
- ``plan_group`` / ``reconcile_group``: merchant consolidation. Member rows
  are moved onto the canonical merchant's keys. Rows that land on an occupied
  family are true duplicates unless their own statement repeats the charge;
  existing rows win over moving ones.

Planning is pure. ``apply_plan`` executes deletes before rekeys so freed keys
can be reused inside one pass.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Row
from sqlalchemy.orm import Session

from . import persistence
from .identity import allocate_key, family_sort_key, identity_key, split_key
from .logging_setup import get_logger
from .models import ReconciliationPlan, Rekey
from .normalizers import normalize

logger = get_logger("finance_tracker.reconciliation")


# ---------------------------------------------------------------------------
# Statement import: one tuple at a time
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TuplePlan:
    base: str
    required: int
    inserts: tuple[str, ...] = ()
    deletes: tuple[str, ...] = ()


def plan_tuple(
    base: str,
    required: int,
    family_ids: Iterable[str],
    *,
    owned_ids: Iterable[str] | None = None,
) -> TuplePlan:
    """Keys to insert or delete so the family holds exactly ``required`` rows.

    Only keys in ``owned_ids`` (default: the whole family) may be deleted,
    highest suffix first. The family can stay above ``required`` when the
    surplus belongs to rows the caller does not own.
    """

    if required < 0:
        raise ValueError("required must be non-negative")
    family = sorted(set(family_ids), key=family_sort_key)

    if len(family) > required:
        owned = set(family if owned_ids is None else owned_ids)
        candidates = [k for k in family if k in owned]
        n = min(len(candidates), len(family) - required)
        deletes = tuple(candidates[len(candidates) - n :])
        return TuplePlan(base=base, required=required, deletes=deletes)

    taken = set(family)
    inserts: list[str] = []
    for _ in range(required - len(family)):
        key = allocate_key(base, taken)
        taken.add(key)
        inserts.append(key)
    return TuplePlan(base=base, required=required, inserts=tuple(inserts))


def reconcile_tuple(
    session: Session,
    *,
    base: str,
    required: int,
    insert_row: Callable[[str, int], bool],
    statement_id: int | None = None,
) -> tuple[list[str], list[str], set[int | None]]:
    """Bring the family of ``base`` to ``required`` live rows.

    With ``statement_id`` the count is the source count of that statement:
    the family keeps at least the largest per-statement count of every other
    statement, and only rows owned by ``statement_id`` are deleted.

    ``insert_row(key, n)`` persists the ``n``-th missing occurrence at ``key``.
    Returns ``(inserted_keys, deleted_keys, statements_of_deleted_rows)``.
    """

    rows = persistence.family_rows(session, base)
    if statement_id is None:
        plan = plan_tuple(base, required, [r.id for r in rows])
    else:
        others = [r for r in rows if r.statement_id != statement_id]
        target = max(required, required_occurrences(others))
        owned = [r.id for r in rows if r.statement_id == statement_id]
        plan = plan_tuple(base, target, [r.id for r in rows], owned_ids=owned)

    deleted = list(plan.deletes)
    persistence.delete_transactions(session, deleted)
    doomed = set(deleted)
    touched = {r.statement_id for r in rows if r.id in doomed}

    inserted: list[str] = []
    for n, key in enumerate(plan.inserts):
        if insert_row(key, n):
            inserted.append(key)

    if inserted or deleted:
        logger.debug(
            "Family %s: source=%d persisted=%d inserted=%d deleted=%d",
            base,
            required,
            len(rows),
            len(inserted),
            len(deleted),
        )
    return inserted, deleted, touched


# ---------------------------------------------------------------------------
# Merchant consolidation: a whole duplicate group at once
# ---------------------------------------------------------------------------


def target_base(row: Any, canonical: str) -> str:
    return identity_key(row.date, normalize(canonical), row.amount)


def required_occurrences(rows: Iterable[Any]) -> int:
    """Largest per-statement occurrence count; unowned rows share one source."""

    counts = Counter(r.statement_id for r in rows)
    return max(counts.values(), default=0)


def plan_group(
    canonical: str,
    members: Sequence[Any],
    families: Mapping[str, Sequence[Any]],
) -> ReconciliationPlan:
    """Plan moving ``members`` onto ``canonical``.

    ``families`` maps each target base key to the rows currently holding that
    base or one of its suffixes (members may appear there too). Rows need
    ``id``, ``statement_id``, ``date``, ``amount`` and ``merchant``.
    """

    member_ids = {m.id for m in members}
    by_base: dict[str, list[Any]] = {}
    for m in members:
        by_base.setdefault(target_base(m, canonical), []).append(m)

    deletes: list[str] = []
    rekeys: list[Rekey] = []
    renames: list[Rekey] = []

    for base, movers in by_base.items():
        resident = [r for r in families.get(base, ()) if r.id not in member_ids]
        resident.sort(key=lambda r: family_sort_key(r.id))
        settled = sorted(
            (m for m in movers if m.merchant == canonical),
            key=lambda r: family_sort_key(r.id),
        )
        others = [m for m in movers if m.merchant != canonical]

        population = resident + settled + others
        required = required_occurrences(population)
        keep, drop = population[:required], population[required:]

        # Members of other buckets may still sit in this family until moved.
        mover_ids = {m.id for m in movers}
        taken = {r.id for r in keep if split_key(r.id)[0] == base}
        taken.update(
            r.id for r in families.get(base, ()) if r.id in member_ids and r.id not in mover_ids
        )
        for r in keep:
            if split_key(r.id)[0] == base:
                if r.id in member_ids and r.merchant != canonical:
                    renames.append(Rekey(old_id=r.id, new_id=r.id, merchant=canonical))
                continue
            new_id = allocate_key(base, taken)
            taken.add(new_id)
            rekeys.append(Rekey(old_id=r.id, new_id=new_id, merchant=canonical))

        deletes.extend(r.id for r in drop)

    return ReconciliationPlan(deletes=tuple(deletes), rekeys=tuple(rekeys), renames=tuple(renames))


def apply_plan(session: Session, plan: ReconciliationPlan) -> tuple[int, int]:
    """Execute ``plan``; returns ``(updated, deleted)``."""

    deleted = persistence.delete_transactions(session, list(plan.deletes))
    updated = 0
    for move in (*plan.rekeys, *plan.renames):
        updated += persistence.rekey_transaction(session, move.old_id, move.new_id, move.merchant)
    return updated, deleted


def reconcile_group(
    session: Session,
    canonical: str,
    members: Sequence[Row],
) -> tuple[int, int, set[int | None]]:
    """Consolidate ``members`` under ``canonical`` within the current transaction.

    Returns ``(updated, deleted, touched_statement_ids)``.
    """

    canonical = canonical.strip()
    if not canonical:
        raise ValueError("canonical merchant must be non-empty")

    bases = {target_base(m, canonical) for m in members}
    families: dict[str, list[Row]] = {b: persistence.family_rows(session, b) for b in bases}
    plan = plan_group(canonical, members, families)

    touched = {m.statement_id for m in members}
    for rows in families.values():
        touched.update(r.statement_id for r in rows)

    if plan.is_empty:
        return 0, 0, touched
    updated, deleted = apply_plan(session, plan)
    logger.info(
        "Consolidated %d rows onto %r: %d updated, %d deleted",
        len(members),
        canonical,
        updated,
        deleted,
    )
    return updated, deleted, touched


__all__ = [
    "TuplePlan",
    "apply_plan",
    "plan_group",
    "plan_tuple",
    "reconcile_group",
    "reconcile_tuple",
    "required_occurrences",
    "target_base",
]
