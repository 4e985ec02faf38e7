"""Runtime settings for the deduplication engine.

Values come from the environment (the CLI loads a local ``.env`` first):

- ``FT_DUPLICATE_THRESHOLD``: default clustering threshold (0.75).
- ``FT_AUTO_CONSOLIDATE_SCORE``: minimum pair score applied without review (0.85).
- ``FT_SCORE_WORKERS``: thread count for pairwise scoring (1 = sequential).

Unparseable numbers fall back to the defaults. A threshold outside
``[MIN_THRESHOLD, MAX_THRESHOLD]`` is a usage error and raises ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_THRESHOLD = 0.75
AUTO_CONSOLIDATE_SCORE = 0.85
MIN_THRESHOLD = 0.5
MAX_THRESHOLD = 0.95
_MAX_WORKERS = 32


def validate_threshold(threshold: float) -> float:
    """Return ``threshold`` as a float, or raise when outside the usable band."""

    if isinstance(threshold, bool):
        raise ValueError("threshold must be a number")
    try:
        value = float(threshold)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"threshold must be a number, got {threshold!r}") from exc
    if not MIN_THRESHOLD <= value <= MAX_THRESHOLD:
        raise ValueError(
            f"threshold must be between {MIN_THRESHOLD} and {MAX_THRESHOLD}, got {value}"
        )
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_workers() -> int:
    raw = os.getenv("FT_SCORE_WORKERS")
    try:
        workers = int(raw) if raw else 1
    except ValueError:
        workers = 1
    return max(1, min(workers, _MAX_WORKERS))


@dataclass(frozen=True, slots=True)
class DedupSettings:
    threshold: float = DEFAULT_THRESHOLD
    auto_consolidate_score: float = AUTO_CONSOLIDATE_SCORE
    score_workers: int = 1


def load_settings() -> DedupSettings:
    """Resolve settings from the environment."""

    return DedupSettings(
        threshold=validate_threshold(_env_float("FT_DUPLICATE_THRESHOLD", DEFAULT_THRESHOLD)),
        auto_consolidate_score=_env_float("FT_AUTO_CONSOLIDATE_SCORE", AUTO_CONSOLIDATE_SCORE),
        score_workers=_env_workers(),
    )


__all__ = [
    "AUTO_CONSOLIDATE_SCORE",
    "DEFAULT_THRESHOLD",
    "DedupSettings",
    "MAX_THRESHOLD",
    "MIN_THRESHOLD",
    "load_settings",
    "validate_threshold",
]
