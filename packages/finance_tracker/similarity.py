"""Fuzzy similarity between two merchant strings.

Five independent signals, each in ``[0, 1]``, are combined by a fixed linear
weighting:

================  =======  ===============================================
signal            weight   notes
================  =======  ===============================================
Jaro-Winkler      0.40     position weighted; prefix boost above 0.7
Levenshtein       0.25     ``1 - distance / max_len``
Jaccard           0.15     whitespace-token sets
prefix            0.10     common leading run / longer length
length ratio      0.10     ``1 - |len(a) - len(b)| / max_len``
================  =======  ===============================================

Inputs are trimmed and case-folded first; identical strings short-circuit to a
perfect score. The pair is put in a fixed order before scoring so
``score(a, b) == score(b, a)`` holds exactly, including in floating point.

The weights are hand-tuned, not learned. Business names mostly differ in their
trailing location tokens, which is why the position-weighted signal dominates.
"""

from __future__ import annotations

from .config import validate_threshold
from .models import Confidence, MatchAnalysis, Prediction, SimilarityScore

WEIGHTS: dict[str, float] = {
    "jaro_winkler": 0.40,
    "levenshtein": 0.25,
    "jaccard": 0.15,
    "prefix": 0.10,
    "length": 0.10,
}

_JW_BOOST_FLOOR = 0.7
_JW_MAX_PREFIX = 4
_JW_SCALE = 0.1

HIGH_CONFIDENCE = 0.85
MEDIUM_CONFIDENCE = 0.6

LIKELY_DUPLICATE = 0.75
POSSIBLE_DUPLICATE = 0.6


def _prep(text: str | None) -> str:
    return (text or "").strip().casefold()


# ---------------------------------------------------------------------------
# Component signals (operate on already-prepared strings)
# ---------------------------------------------------------------------------


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with unit insert/delete/substitute costs."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def levenshtein_similarity(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_len


def jaro(a: str, b: str) -> float:
    """Jaro similarity: matches inside a sliding window, minus transpositions."""

    if a == b:
        return 1.0
    len_a, len_b = len(a), len(b)
    if len_a == 0 or len_b == 0:
        return 0.0

    window = max(0, max(len_a, len_b) // 2 - 1)
    a_matched = [False] * len_a
    b_matched = [False] * len_b

    matches = 0
    for i, ca in enumerate(a):
        lo = max(0, i - window)
        hi = min(i + window + 1, len_b)
        for j in range(lo, hi):
            if b_matched[j] or b[j] != ca:
                continue
            a_matched[i] = True
            b_matched[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    # Count half-transpositions between the matched subsequences.
    transpositions = 0
    k = 0
    for i in range(len_a):
        if not a_matched[i]:
            continue
        while not b_matched[k]:
            k += 1
        if a[i] != b[k]:
            transpositions += 1
        k += 1

    m = float(matches)
    return (m / len_a + m / len_b + (m - transpositions / 2) / m) / 3.0


def jaro_winkler(a: str, b: str) -> float:
    """Jaro with a shared-prefix boost, applied only when Jaro >= 0.7."""

    base = jaro(a, b)
    if base < _JW_BOOST_FLOOR:
        return base

    prefix = 0
    for ca, cb in zip(a[:_JW_MAX_PREFIX], b[:_JW_MAX_PREFIX]):
        if ca != cb:
            break
        prefix += 1
    return base + prefix * _JW_SCALE * (1.0 - base)


def jaccard(a: str, b: str) -> float:
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def prefix_similarity(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    common = 0
    for ca, cb in zip(a, b):
        if ca != cb:
            break
        common += 1
    return common / max_len


def length_ratio(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - abs(len(a) - len(b)) / max_len


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_PERFECT = SimilarityScore(
    jaro_winkler=1.0, levenshtein=1.0, jaccard=1.0, prefix=1.0, length=1.0, combined=1.0
)


def score(a: str, b: str) -> SimilarityScore:
    """Return all five signals and their weighted combination for a pair."""

    a, b = _prep(a), _prep(b)
    if a == b:
        return _PERFECT
    a, b = sorted((a, b))

    jw = jaro_winkler(a, b)
    lev = levenshtein_similarity(a, b)
    jac = jaccard(a, b)
    pre = prefix_similarity(a, b)
    ln = length_ratio(a, b)
    combined = (
        WEIGHTS["jaro_winkler"] * jw
        + WEIGHTS["levenshtein"] * lev
        + WEIGHTS["jaccard"] * jac
        + WEIGHTS["prefix"] * pre
        + WEIGHTS["length"] * ln
    )
    return SimilarityScore(
        jaro_winkler=jw,
        levenshtein=lev,
        jaccard=jac,
        prefix=pre,
        length=ln,
        combined=min(1.0, max(0.0, combined)),
    )


def confidence_for(value: float, threshold: float) -> Confidence:
    if value >= HIGH_CONFIDENCE:
        return Confidence.HIGH
    if value >= MEDIUM_CONFIDENCE and value >= threshold:
        return Confidence.MEDIUM
    return Confidence.LOW


def predict(a: str, b: str, threshold: float = LIKELY_DUPLICATE) -> Prediction:
    """Classify a pair against ``threshold``.

    Raises ``ValueError`` when ``threshold`` falls outside ``[0.5, 0.95]``.
    """

    threshold = validate_threshold(threshold)
    value = score(a, b).combined
    return Prediction(
        is_duplicate=value >= threshold,
        score=value,
        confidence=confidence_for(value, threshold),
        threshold=threshold,
    )


def analyze_match(a: str, b: str) -> MatchAnalysis:
    """Explain a pair score signal by signal, with a verdict."""

    s = score(a, b)
    labels = {
        "jaro_winkler": ("jaroWinkler", s.jaro_winkler),
        "levenshtein": ("levenshtein", s.levenshtein),
        "jaccard": ("jaccard", s.jaccard),
        "prefix": ("prefix", s.prefix),
        "length": ("length", s.length),
    }
    breakdown = {
        label: f"{value:.3f} x {WEIGHTS[key]:.2f} = {value * WEIGHTS[key]:.3f}"
        for key, (label, value) in labels.items()
    }
    breakdown["combined"] = f"{s.combined:.3f}"

    if s.combined >= LIKELY_DUPLICATE:
        verdict = "LIKELY DUPLICATE"
    elif s.combined >= POSSIBLE_DUPLICATE:
        verdict = "POSSIBLE DUPLICATE"
    else:
        verdict = "NOT A DUPLICATE"

    return MatchAnalysis(merchant1=a, merchant2=b, scores=s, breakdown=breakdown, verdict=verdict)


__all__ = [
    "WEIGHTS",
    "analyze_match",
    "confidence_for",
    "jaccard",
    "jaro",
    "jaro_winkler",
    "length_ratio",
    "levenshtein_distance",
    "levenshtein_similarity",
    "predict",
    "prefix_similarity",
    "score",
]
