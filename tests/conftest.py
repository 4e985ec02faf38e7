"""Pytest configuration for test isolation.

Tests talk to file-backed SQLite databases created per test under
``tmp_path``. Engines are cached per URL by ``db.client``, so every test
disposes them afterwards; environment knobs read by the engine
(``FT_*``, ``DATABASE_URL``) are cleared so a developer's ``.env`` or shell
cannot leak into assertions.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make the workspace packages importable without an install step.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from db.client import dispose_engines  # noqa: E402

from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402

_ENV_KEYS = (
    "DATABASE_URL",
    "FT_DUPLICATE_THRESHOLD",
    "FT_AUTO_CONSOLIDATE_SCORE",
    "FT_SCORE_WORKERS",
    "FINANCE_TRACKER_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    dispose_engines()


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    """A freshly migrated SQLite database for one test."""

    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
