"""Group merchant spellings into probable-duplicate clusters.

Public surface:
- ``match_key``: the string actually scored when clustering.
- ``find_duplicate_pairs``: all pairs at or above a threshold, best first.
- ``cluster``: greedy single-linkage grouping with canonical selection and
  review flags.
- ``group_by_normalized_name``: exact grouping on the normalized form, used by
  the normalized-name merge.

Clustering is greedy single linkage: pairs are visited in descending score
order and a merchant, once claimed by a group, is never reconsidered. A group
is therefore only guaranteed to be linked above the threshold through its seed
chain; two variants in the same group may score below it against each other.
Groups where that matters are flagged for review rather than auto-applied.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from itertools import combinations

from .config import DEFAULT_THRESHOLD, validate_threshold
from .logging_setup import get_logger
from .models import CanonicalMode, DuplicateGroup, DuplicatePair
from .normalizers import normalize
from .similarity import levenshtein_distance, score

logger = get_logger("finance_tracker.duplicates")

# Variants whose normalized form is further than this (edit distance) from the
# canonical's normalized form send the group to manual review.
REVIEW_DISTANCE = 5
REVIEW_MAX_VARIANTS = 2

_DOMAIN_SUFFIX = re.compile(r"\.(?:com|net|org|io|co)$")
_APOSTROPHES = re.compile(r"['’]")
_PUNCTUATION = re.compile(r"[^\w\s]")


def match_key(merchant: str) -> str:
    """Comparison form of a merchant: normalized, case-folded, domain-free.

    ``"NETFLIX.COM"`` and ``"Netflix"`` share the key ``"netflix"``.
    """

    key = normalize(merchant).strip().casefold()
    key = _DOMAIN_SUFFIX.sub("", key)
    key = _APOSTROPHES.sub("", key)
    key = _PUNCTUATION.sub(" ", key)
    return " ".join(key.split())


def _distinct(merchants: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(m for m in merchants if isinstance(m, str) and m.strip()))


def find_duplicate_pairs(
    merchants: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
    *,
    workers: int = 1,
) -> list[DuplicatePair]:
    """Score every distinct pair and return those at or above ``threshold``.

    Ordered by descending score; ties keep input order. Scoring is pure, so
    ``workers > 1`` fans the rows out over a thread pool.
    """

    threshold = validate_threshold(threshold)
    distinct = _distinct(merchants)
    keys = [match_key(m) for m in distinct]
    index_pairs = list(combinations(range(len(distinct)), 2))

    def _score(ij: tuple[int, int]) -> float:
        i, j = ij
        return score(keys[i], keys[j]).combined

    if workers > 1 and len(index_pairs) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            combined = list(pool.map(_score, index_pairs))
    else:
        combined = [_score(ij) for ij in index_pairs]

    hits: list[tuple[float, int, int]] = [
        (value, i, j) for (i, j), value in zip(index_pairs, combined) if value >= threshold
    ]
    hits.sort(key=lambda h: (-h[0], h[1], h[2]))

    pairs = [
        DuplicatePair(merchant1=distinct[i], merchant2=distinct[j], score=score(keys[i], keys[j]))
        for _, i, j in hits
    ]
    logger.debug(
        "Scored %d pairs over %d merchants; %d at or above %.2f",
        len(index_pairs),
        len(distinct),
        len(pairs),
        threshold,
    )
    return pairs


def _claim_groups(
    pairs: Iterable[DuplicatePair],
    rank: Mapping[str, int],
    claimed: set[str],
) -> list[tuple[list[str], list[DuplicatePair]]]:
    """Greedy single-linkage pass; mutates ``claimed`` and returns raw groups."""

    groups: list[tuple[list[str], list[DuplicatePair]]] = []
    owner: dict[str, int] = {}

    for pair in pairs:
        a, b = pair.merchant1, pair.merchant2
        a_claimed, b_claimed = a in claimed, b in claimed
        if a_claimed and b_claimed:
            continue
        if not a_claimed and not b_claimed:
            seed, other = (a, b) if rank[a] <= rank[b] else (b, a)
            owner[seed] = owner[other] = len(groups)
            groups.append(([seed, other], [pair]))
            claimed.update((seed, other))
            continue
        anchor, newcomer = (a, b) if a_claimed else (b, a)
        idx = owner[anchor]
        groups[idx][0].append(newcomer)
        groups[idx][1].append(pair)
        owner[newcomer] = idx
        claimed.add(newcomer)

    return groups


def _pick_canonical(
    variants: list[str],
    mode: CanonicalMode,
    history: Mapping[str, int] | None,
) -> str:
    if mode is CanonicalMode.HISTORY:
        counts = history or {}
        # max() keeps the first of equal counts, i.e. the seed.
        return max(variants, key=lambda v: counts.get(v, 0))
    return min(variants, key=len)


def review_reason(canonical: str, variants: Iterable[str]) -> str | None:
    """Why a group should not be auto-applied, or ``None`` when it is safe."""

    variants = list(variants)
    if len(variants) > REVIEW_MAX_VARIANTS:
        return f"{len(variants)} variants; multi-way merges need manual review"
    target = normalize(canonical).casefold()
    for v in variants:
        if levenshtein_distance(normalize(v).casefold(), target) > REVIEW_DISTANCE:
            return f"{v!r} differs from {canonical!r} by more than {REVIEW_DISTANCE} characters"
    return None


def _build_group(
    variants: list[str],
    pairs: list[DuplicatePair],
    mode: CanonicalMode,
    history: Mapping[str, int] | None,
) -> DuplicateGroup:
    canonical = _pick_canonical(variants, mode, history)
    reason = review_reason(canonical, variants)
    return DuplicateGroup(
        canonical=canonical,
        variants=tuple(variants),
        pairs=tuple(pairs),
        needs_review=reason is not None,
        review_reason=reason,
    )


def cluster(
    merchants: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
    *,
    mode: CanonicalMode = CanonicalMode.SHORTEST,
    history: Mapping[str, int] | None = None,
    workers: int = 1,
) -> list[DuplicateGroup]:
    """Cluster merchant spellings into duplicate groups.

    ``merchants`` order defines rank: when a pair of unclaimed merchants opens a
    new group, the earlier one seeds it. Merchants with no partner above the
    threshold appear in no group.

    >>> [g.canonical for g in cluster(["NETFLIX", "NETFLIX.COM", "SPOTIFY"])]
    ['NETFLIX']
    """

    distinct = _distinct(merchants)
    rank = {m: i for i, m in enumerate(distinct)}
    pairs = find_duplicate_pairs(distinct, threshold, workers=workers)

    claimed: set[str] = set()
    raw = _claim_groups(pairs, rank, claimed)
    groups = [_build_group(variants, links, mode, history) for variants, links in raw]

    logger.info(
        "Clustered %d merchants into %d groups (%d flagged for review)",
        len(distinct),
        len(groups),
        sum(1 for g in groups if g.needs_review),
    )
    return groups


def group_by_normalized_name(merchants: Iterable[str]) -> list[DuplicateGroup]:
    """Group merchants whose normalized forms are identical.

    Canonical is the shortest variant; review flags follow the same rules as
    :func:`cluster`. Groups come back ordered by their normalized form.
    """

    buckets: dict[str, list[str]] = {}
    for m in sorted(_distinct(merchants)):
        buckets.setdefault(normalize(m).strip(), []).append(m)

    groups: list[DuplicateGroup] = []
    for _normalized, variants in sorted(buckets.items()):
        if len(variants) < 2:
            continue
        groups.append(_build_group(variants, [], CanonicalMode.SHORTEST, None))
    return groups


__all__ = [
    "REVIEW_DISTANCE",
    "cluster",
    "find_duplicate_pairs",
    "group_by_normalized_name",
    "match_key",
    "review_reason",
]
