"""Data models for ``finance_tracker``.

Two families live here:

- Frozen dataclasses for values computed by the engine (similarity scores,
  duplicate groups, reconciliation/consolidation results). They are transient
  and never persisted.
- Pydantic models for untrusted input: transactions emitted by the upstream
  statement parser and the statement envelope around them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------


class Confidence(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True, slots=True)
class SimilarityScore:
    """The five component signals for a pair plus their weighted combination.

    Every value lies in ``[0, 1]``. Computed fresh per pair and never cached,
    since the merchant set changes between runs.
    """

    jaro_winkler: float
    levenshtein: float
    jaccard: float
    prefix: float
    length: float
    combined: float

    def as_dict(self, *, digits: int = 3) -> dict[str, float]:
        return {
            "jaroWinkler": round(self.jaro_winkler, digits),
            "levenshtein": round(self.levenshtein, digits),
            "jaccard": round(self.jaccard, digits),
            "prefix": round(self.prefix, digits),
            "length": round(self.length, digits),
        }


@dataclass(frozen=True, slots=True)
class Prediction:
    is_duplicate: bool
    score: float
    confidence: Confidence
    threshold: float


@dataclass(frozen=True, slots=True)
class MatchAnalysis:
    """Human-readable explanation of a pair score."""

    merchant1: str
    merchant2: str
    scores: SimilarityScore
    breakdown: dict[str, str]
    verdict: str


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------


class CanonicalMode(StrEnum):
    """How a group's representative spelling is chosen.

    ``SHORTEST``: the shortest variant (assumed least contaminated).
    ``HISTORY``: the variant with the most stored transactions.
    """

    SHORTEST = "shortest"
    HISTORY = "history"


@dataclass(frozen=True, slots=True)
class DuplicatePair:
    merchant1: str
    merchant2: str
    score: SimilarityScore

    @property
    def combined(self) -> float:
        return self.score.combined


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    """A cluster of merchant spellings believed to denote one payee.

    ``variants`` keeps claim order (seed first) and includes ``canonical``.
    ``pairs`` are the pairwise links that justified each claim.
    """

    canonical: str
    variants: tuple[str, ...]
    pairs: tuple[DuplicatePair, ...] = ()
    needs_review: bool = False
    review_reason: str | None = None

    @property
    def min_score(self) -> float:
        if not self.pairs:
            return 1.0
        return min(p.combined for p in self.pairs)


# ---------------------------------------------------------------------------
# Reconciliation and consolidation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Rekey:
    old_id: str
    new_id: str
    merchant: str


@dataclass(frozen=True, slots=True)
class ReconciliationPlan:
    """Minimal mutation set for one consolidation group.

    Deletes are applied before rekeys/renames so freed keys can be reused.
    """

    deletes: tuple[str, ...] = ()
    rekeys: tuple[Rekey, ...] = ()
    renames: tuple[Rekey, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.deletes or self.rekeys or self.renames)


@dataclass(frozen=True, slots=True)
class GroupResult:
    group_id: str
    success: bool
    updated: int = 0
    deleted: int = 0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Outcome of a multi-group mutation action (fix/consolidate/merge).

    The action itself succeeds even when individual groups fail; per-group
    status lives in ``results``.
    """

    results: tuple[GroupResult, ...]
    transactions_updated: int
    transactions_deleted: int
    planned: tuple[DuplicateGroup, ...] = ()
    flagged: tuple[DuplicateGroup, ...] = ()
    dry_run: bool = False

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)


@dataclass(frozen=True, slots=True)
class CandidateTransaction:
    id: str
    merchant: str
    description: str
    address: str | None
    category: str


@dataclass(frozen=True, slots=True)
class CandidateBucket:
    """Same-date, same-amount rows carrying more than one merchant spelling."""

    group_id: str
    date: str
    amount: Decimal
    merchants: tuple[str, ...]
    transactions: tuple[CandidateTransaction, ...]


@dataclass(frozen=True, slots=True)
class AnalysisReport:
    merchants_analyzed: int
    threshold: float
    pairs: tuple[DuplicatePair, ...]
    groups: tuple[DuplicateGroup, ...]
    buckets: tuple[CandidateBucket, ...] = ()


@dataclass(frozen=True, slots=True)
class SkippedRecord:
    reason: str
    record: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ImportSummary:
    statement_id: int | None
    institution: str
    month: str
    revision_number: int
    is_amendment: bool
    inserted_ids: tuple[str, ...]
    deleted_ids: tuple[str, ...]
    skipped: tuple[SkippedRecord, ...]
    status: str  # "imported" when rows were inserted or deleted, else "already_complete"


@dataclass(frozen=True, slots=True)
class MigrationSummary:
    total: int
    migrated: int
    skipped: int
    suffixed: int
    errors: tuple[dict[str, str], ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Upstream input contracts (statement parser output)
# ---------------------------------------------------------------------------

_DATE_FORMAT = "%m/%d/%Y"


def to_amount(raw: Any) -> Decimal:
    """Parse ``raw`` into a two-decimal ``Decimal`` (raises ``ValueError``)."""

    if isinstance(raw, bool) or raw is None:
        raise ValueError("amount must be a number")
    try:
        d = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class ParsedTransaction(BaseModel):
    """One transaction as emitted by the statement parser.

    ``description`` is raw merchant text and may be address-contaminated; it
    must go through :func:`finance_tracker.normalizers.normalize` before use as
    an identity or clustering key.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    date: str
    description: str
    address: str | None = None
    amount: Decimal
    category: str

    @field_validator("date")
    @classmethod
    def _date_is_mmddyyyy(cls, v: str) -> str:
        try:
            datetime.strptime(v, _DATE_FORMAT)
        except ValueError as exc:
            raise ValueError(f"date must be MM/DD/YYYY, got {v!r}") from exc
        return v

    @field_validator("description", "category")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must be non-empty")
        return v

    @field_validator("address", mode="before")
    @classmethod
    def _blank_address_is_none(cls, v: Any) -> Any:
        if v is None:
            return None
        s = str(v).strip()
        return s if s and s.lower() != "null" else None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_positive(cls, v: Any) -> Decimal:
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("amount must be finite")
        d = to_amount(v)
        if d <= 0:
            raise ValueError("amount must be positive")
        return d


class ParsedStatement(BaseModel):
    """Statement envelope; transactions stay raw and are validated one by one."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    institution: str
    month: str
    transactions: list[Any]

    @field_validator("institution", "month")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must be non-empty")
        return v


__all__ = [
    "AnalysisReport",
    "BatchSummary",
    "CandidateBucket",
    "CandidateTransaction",
    "CanonicalMode",
    "Confidence",
    "DuplicateGroup",
    "DuplicatePair",
    "GroupResult",
    "ImportSummary",
    "MatchAnalysis",
    "MigrationSummary",
    "ParsedStatement",
    "ParsedTransaction",
    "Prediction",
    "ReconciliationPlan",
    "Rekey",
    "SimilarityScore",
    "SkippedRecord",
    "to_amount",
]
