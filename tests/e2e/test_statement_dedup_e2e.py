# ruff: noqa: E402, I001
from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

# Make sure the workspace `packages/` dir is on sys.path so `finance_tracker` is importable
_ROOT = Path(__file__).resolve().parents[2]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from db.client import session_scope  # noqa: E402

from finance_tracker.config import DedupSettings  # noqa: E402
from finance_tracker.consolidation import analyze, consolidate  # noqa: E402
from finance_tracker.ingest import extract_statement_payload, import_statement  # noqa: E402
from finance_tracker.migration import migrate_identity_keys  # noqa: E402

from tests.helpers.db import (  # noqa: E402
    bootstrap_sqlite_db,
    fetch_statements,
    fetch_transactions,
)

AUGUST = """{"institution": "Chase", "month": "August 2025", "transactions": [
  {"date": "08/13/2025", "description": "NETFLIX", "amount": 15.49, "category": "Streaming"},
  {"date": "08/20/2025",
   "description": "CUB FOODS #01693 1104 LAGOON AVE MINNEAPOLIS 55408 MN USA",
   "address": "1104 LAGOON AVE", "amount": 46.43, "category": "Groceries"}
]}"""

SEPTEMBER = """Parsed statement follows.
{"institution": "Chase", "month": "September 2025", "transactions": [
  {"date": "09/13/2025", "description": "NETFLIX.COM", "amount": 15.49, "category": "Streaming"},
  {"date": "09/13/2025", "description": "CUB FOODS", "amount": 46.43, "category": "Groceries"},
  {"date": "09/13/2025", "description": "CUB FOODS", "amount": 46.43, "category": "Groceries"}
]}"""


def test_e2e_import_then_consolidate(tmp_path: Path):
    # -------------------------
    # DB bootstrap
    # -------------------------
    db_url = bootstrap_sqlite_db(tmp_path / "ledger-e2e.db")
    settings = DedupSettings()

    # -------------------------
    # Import both statements
    # -------------------------
    for text in (AUGUST, SEPTEMBER):
        with session_scope(database_url=db_url) as session:
            summary = import_statement(
                session, extract_statement_payload(text), today=date(2025, 10, 1)
            )
        assert summary.status == "imported"
        assert summary.skipped == ()

    rows = fetch_transactions(db_url)
    assert len(rows) == 5
    assert {r.merchant for r in rows} == {"NETFLIX", "NETFLIX.COM", "CUB FOODS"}

    # -------------------------
    # Analyze: one NETFLIX group, nothing written
    # -------------------------
    with session_scope(database_url=db_url) as session:
        report = analyze(session, settings=settings)
    assert [set(g.variants) for g in report.groups] == [{"NETFLIX", "NETFLIX.COM"}]
    assert fetch_transactions(db_url) == rows

    # -------------------------
    # Consolidate and verify final state
    # -------------------------
    with session_scope(database_url=db_url) as session:
        result = consolidate(session, settings=settings)
    assert result.successful == 1
    assert result.transactions_updated == 1
    assert result.transactions_deleted == 0

    rows = fetch_transactions(db_url)
    assert len(rows) == 5
    assert {r.merchant for r in rows} == {"NETFLIX", "CUB FOODS"}
    counts = {s.month: s.transaction_count for s in fetch_statements(db_url)}
    assert counts == {"August 2025": 2, "September 2025": 3}

    # Every key is already canonical, so the migration has nothing to do.
    with session_scope(database_url=db_url) as session:
        migration = migrate_identity_keys(session)
    assert (migration.migrated, migration.skipped) == (0, 5)
