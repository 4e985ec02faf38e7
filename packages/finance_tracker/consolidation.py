"""Deduplication actions over the stored ledger.

Public surface:
- ``analyze``: read-only report of merchant clusters and same-day/same-amount
  collisions.
- ``apply_fixes``: manual consolidation of explicit transaction groups.
- ``consolidate``: automatic consolidation of unambiguous, high-scoring
  clusters.
- ``merge_normalized``: consolidation of spellings that normalize identically.
- ``handle_request``: dispatch a parsed request variant to one of the above.

Every mutation action validates its whole input before touching the store.
Each group is then applied inside its own SAVEPOINT: a failing group is rolled
back and recorded in the results while the rest of the batch continues. The
caller commits.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable, Sequence
from typing import Any, assert_never

from sqlalchemy import Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import persistence
from .config import DedupSettings, load_settings, validate_threshold
from .duplicates import cluster, group_by_normalized_name
from .logging_setup import get_logger
from .migration import migrate_identity_keys
from .models import (
    AnalysisReport,
    BatchSummary,
    CandidateBucket,
    CandidateTransaction,
    CanonicalMode,
    Confidence,
    DuplicateGroup,
    GroupResult,
    MigrationSummary,
)
from .reconciliation import reconcile_group
from .requests import (
    Analyze,
    Consolidate,
    Fix,
    FixInstruction,
    MergeNormalized,
    MigrateIdentities,
    Request,
    parse_fixes,
    require_confirmation,
)
from .statements import refresh_transaction_counts

logger = get_logger("finance_tracker.consolidation")

# Recommendation tiers reported by ``analyze`` for each pair and each group.
_TIERS: tuple[tuple[float, Confidence, str], ...] = (
    (0.85, Confidence.HIGH, "Safe to auto-consolidate"),
    (0.75, Confidence.MEDIUM, "Review before consolidating"),
    (0.0, Confidence.LOW, "Manual review recommended"),
)


def score_recommendation(value: float) -> tuple[Confidence, str]:
    for floor, tier, text in _TIERS:
        if value >= floor:
            return tier, text
    return Confidence.LOW, _TIERS[-1][2]


def recommendation(group: DuplicateGroup) -> tuple[Confidence, str]:
    """Tier of a whole group, taken from its weakest pair."""

    return score_recommendation(group.min_score)


def bucket_id(date: str, amount: Any) -> str:
    """Opaque, URL-safe id for a ``(date, amount)`` bucket."""

    return base64.urlsafe_b64encode(f"{date}|{amount}".encode()).decode("ascii")


# ---------------------------------------------------------------------------
# Analyze
# ---------------------------------------------------------------------------


def _candidate_buckets(session: Session) -> list[CandidateBucket]:
    buckets: list[CandidateBucket] = []
    for date, amount in persistence.date_amount_collisions(session):
        rows = persistence.rows_for_date_amount(session, date, amount)
        buckets.append(
            CandidateBucket(
                group_id=bucket_id(date, amount),
                date=date,
                amount=amount,
                merchants=tuple(sorted({r.merchant for r in rows})),
                transactions=tuple(
                    CandidateTransaction(
                        id=r.id,
                        merchant=r.merchant,
                        description=r.description,
                        address=r.address,
                        category=r.category,
                    )
                    for r in rows
                ),
            )
        )
    return buckets


def analyze(
    session: Session,
    threshold: float | None = None,
    *,
    settings: DedupSettings | None = None,
) -> AnalysisReport:
    """Report probable duplicate merchants without mutating anything."""

    settings = settings or load_settings()
    threshold = validate_threshold(settings.threshold if threshold is None else threshold)

    merchants = persistence.distinct_merchants(session)
    groups = cluster(
        merchants,
        threshold,
        mode=CanonicalMode.HISTORY,
        history=persistence.merchant_history(session),
        workers=settings.score_workers,
    )
    pairs = tuple(p for g in groups for p in g.pairs)
    buckets = _candidate_buckets(session)

    logger.info(
        "Analyzed %d merchants at %.2f: %d groups, %d pairs, %d date/amount buckets",
        len(merchants),
        threshold,
        len(groups),
        len(pairs),
        len(buckets),
    )
    return AnalysisReport(
        merchants_analyzed=len(merchants),
        threshold=threshold,
        pairs=pairs,
        groups=tuple(groups),
        buckets=tuple(buckets),
    )


# ---------------------------------------------------------------------------
# Mutation actions
# ---------------------------------------------------------------------------


def _apply_groups(
    session: Session,
    work: Iterable[tuple[str, str, Sequence[Row]]],
) -> tuple[list[GroupResult], int, int]:
    """Reconcile each ``(group_id, canonical, rows)`` in its own SAVEPOINT."""

    results: list[GroupResult] = []
    total_updated = total_deleted = 0
    touched: set[int | None] = set()

    for group_id, canonical, rows in work:
        if not rows:
            results.append(
                GroupResult(group_id=group_id, success=False, error="No matching transactions")
            )
            continue
        try:
            with session.begin_nested():
                updated, deleted, statements_hit = reconcile_group(session, canonical, rows)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error("Group %s failed and was rolled back: %s", group_id, exc)
            results.append(GroupResult(group_id=group_id, success=False, error=str(exc)))
            continue
        touched |= statements_hit
        total_updated += updated
        total_deleted += deleted
        results.append(
            GroupResult(group_id=group_id, success=True, updated=updated, deleted=deleted)
        )

    refresh_transaction_counts(session, touched)
    return results, total_updated, total_deleted


def apply_fixes(
    session: Session,
    fixes: Fix | Sequence[FixInstruction | dict[str, Any]],
) -> BatchSummary:
    """Move each fix's transactions onto its canonical merchant.

    The whole list is validated first; ``InvalidRequestError`` is raised before
    any row changes.
    """

    request = fixes if isinstance(fixes, Fix) else parse_fixes(list(fixes))
    # Lazy: each fix sees the rows as left by the fixes before it.
    work = (
        (
            fix.group_id,
            fix.canonical_merchant,
            persistence.rows_by_ids(session, fix.transaction_ids),
        )
        for fix in request.fixes
    )
    results, updated, deleted = _apply_groups(session, work)
    logger.info(
        "Applied %d fixes: %d updated, %d deleted", len(results), updated, deleted
    )
    return BatchSummary(
        results=tuple(results), transactions_updated=updated, transactions_deleted=deleted
    )


def consolidate(
    session: Session,
    threshold: float | None = None,
    *,
    settings: DedupSettings | None = None,
) -> BatchSummary:
    """Auto-apply clusters that are unambiguous and score high enough.

    A cluster is applied only when it is not flagged for review and its
    weakest pair scores at least ``settings.auto_consolidate_score``. Everything
    else comes back in ``flagged``.
    """

    settings = settings or load_settings()
    threshold = validate_threshold(settings.threshold if threshold is None else threshold)

    groups = cluster(
        persistence.distinct_merchants(session),
        threshold,
        mode=CanonicalMode.HISTORY,
        history=persistence.merchant_history(session),
        workers=settings.score_workers,
    )
    eligible = [
        g for g in groups if not g.needs_review and g.min_score >= settings.auto_consolidate_score
    ]
    flagged = [g for g in groups if g not in eligible]

    results: list[GroupResult] = []
    updated = deleted = 0
    for g in eligible:
        # Re-read per group: an earlier group may have moved rows.
        rows = persistence.rows_for_merchants(session, g.variants)
        part, u, d = _apply_groups(session, [(g.canonical, g.canonical, rows)])
        results.extend(part)
        updated += u
        deleted += d

    logger.info(
        "Consolidated %d of %d groups (%d flagged): %d updated, %d deleted",
        len(eligible),
        len(groups),
        len(flagged),
        updated,
        deleted,
    )
    return BatchSummary(
        results=tuple(results),
        transactions_updated=updated,
        transactions_deleted=deleted,
        planned=tuple(eligible),
        flagged=tuple(flagged),
    )


def merge_normalized(session: Session, *, auto_fix: bool = True) -> BatchSummary:
    """Merge spellings whose normalized forms match exactly.

    With ``auto_fix=False`` nothing is written and the planned/flagged groups
    are returned as a dry run.
    """

    groups = group_by_normalized_name(persistence.distinct_merchants(session))
    ready = [g for g in groups if not g.needs_review]
    flagged = [g for g in groups if g.needs_review]
    for g in flagged:
        logger.warning("Flagged for review: %s (%d variants)", g.canonical, len(g.variants))

    if not auto_fix:
        return BatchSummary(
            results=(),
            transactions_updated=0,
            transactions_deleted=0,
            planned=tuple(ready),
            flagged=tuple(flagged),
            dry_run=True,
        )

    results: list[GroupResult] = []
    updated = deleted = 0
    for g in ready:
        rows = persistence.rows_for_merchants(session, g.variants)
        part, u, d = _apply_groups(session, [(g.canonical, g.canonical, rows)])
        results.extend(part)
        updated += u
        deleted += d

    logger.info(
        "Normalized merge: %d groups applied, %d flagged, %d updated, %d deleted",
        len(ready),
        len(flagged),
        updated,
        deleted,
    )
    return BatchSummary(
        results=tuple(results),
        transactions_updated=updated,
        transactions_deleted=deleted,
        planned=tuple(ready),
        flagged=tuple(flagged),
    )


def handle_request(
    session: Session,
    request: Request,
    *,
    settings: DedupSettings | None = None,
) -> AnalysisReport | BatchSummary | MigrationSummary:
    """Run the action named by ``request``."""

    match request:
        case Analyze():
            return analyze(session, request.threshold, settings=settings)
        case Fix():
            return apply_fixes(session, request)
        case Consolidate():
            return consolidate(session, request.threshold, settings=settings)
        case MergeNormalized():
            require_confirmation(request)
            return merge_normalized(session, auto_fix=request.auto_fix)
        case MigrateIdentities():
            require_confirmation(request)
            return migrate_identity_keys(session)
        case _:
            assert_never(request)


__all__ = [
    "analyze",
    "apply_fixes",
    "bucket_id",
    "consolidate",
    "handle_request",
    "merge_normalized",
    "recommendation",
    "score_recommendation",
]
