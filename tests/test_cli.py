from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path

from typer.testing import CliRunner

from finance_tracker.cli import app
from finance_tracker.identity import IdentityScheme, identity_key
from tests.helpers.db import fetch_statements, fetch_transactions, seed_transactions

runner = CliRunner()

STATEMENT_OUTPUT = """Sure! Here is the statement:
{"institution": "Chase", "month": "September 2025", "transactions": [
  {"date": "09/13/2025", "description": "CUB FOODS", "address": "null",
   "amount": 46.43, "category": "Groceries"},
  {"date": "09/13/2025", "description": "CUB FOODS", "address": null,
   "amount": 46.43, "category": "Groceries"},
  {"date": "09/14/2025", "description": "NETFLIX.COM", "amount": -1, "category": "Streaming"}
]}
"""


def _json(result) -> dict:
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_score_identical_names():
    payload = _json(runner.invoke(app, ["score", "NETFLIX", "netflix"]))
    assert payload["isDuplicate"] is True
    assert payload["score"] == 1.0
    assert payload["confidence"] == "HIGH"
    assert set(payload["scores"]) >= {"levenshtein", "jaroWinkler"}


def test_score_rejects_bad_threshold():
    result = runner.invoke(app, ["score", "A", "B", "--threshold", "0.3"])
    assert result.exit_code == 1


def test_import_statement(tmp_path: Path, database_url: str):
    path = tmp_path / "statement.txt"
    path.write_text(STATEMENT_OUTPUT, encoding="utf-8")

    payload = _json(
        runner.invoke(
            app,
            ["import-statement", "--json-path", str(path), "--database-url", database_url],
        )
    )

    assert payload["status"] == "imported"
    assert len(payload["inserted_ids"]) == 2
    assert len(payload["skipped"]) == 1
    (statement,) = fetch_statements(database_url)
    assert statement.transaction_count == 2


def test_import_statement_reports_unreadable_output(tmp_path: Path, database_url: str):
    path = tmp_path / "garbage.txt"
    path.write_text("the parser gave up", encoding="utf-8")
    result = runner.invoke(
        app, ["import-statement", "--json-path", str(path), "--database-url", database_url]
    )
    assert result.exit_code == 1
    assert fetch_statements(database_url) == []


def test_analyze_and_fix(tmp_path: Path, database_url: str):
    ids = seed_transactions(
        database_url,
        [
            {"date": "09/13/2025", "merchant": "NETFLIX", "amount": "15.49"},
            {"date": "09/13/2025", "merchant": "NETFLIX", "amount": "15.49", "id": "n-1"},
            {"date": "10/13/2025", "merchant": "NETFLIX.COM", "amount": "15.49"},
        ],
    )
    report = _json(runner.invoke(app, ["analyze", "--database-url", database_url]))
    (group,) = report["groups"]
    assert group["canonical"] == "NETFLIX"
    assert group["confidence"] == "HIGH"
    assert all(p["confidence"] and p["recommendation"] for p in group["pairs"])

    fixes = tmp_path / "fixes.json"
    fixes.write_text(
        json.dumps(
            {
                "fixes": [
                    {
                        "groupId": "netflix",
                        "canonicalMerchant": group["canonical"],
                        "transactionIds": [ids[2]],
                    }
                ]
            }
        ),
        encoding="utf-8",
    )
    summary = _json(
        runner.invoke(app, ["fix", "--fixes-path", str(fixes), "--database-url", database_url])
    )
    assert summary["transactionsUpdated"] == 1
    assert summary["results"][0]["success"] is True
    assert {r.merchant for r in fetch_transactions(database_url)} == {"NETFLIX"}


def test_fix_rejects_invalid_file(tmp_path: Path, database_url: str):
    fixes = tmp_path / "fixes.json"
    fixes.write_text(json.dumps([{"groupId": "g"}]), encoding="utf-8")
    result = runner.invoke(
        app, ["fix", "--fixes-path", str(fixes), "--database-url", database_url]
    )
    assert result.exit_code == 1


def test_merge_normalized_requires_confirm(database_url: str):
    seed_transactions(
        database_url,
        [
            {"date": "09/13/2025", "merchant": "CUB FOODS", "amount": "46.43"},
            {"date": "09/20/2025", "merchant": "CUB FOODS #01693", "amount": "46.43"},
        ],
    )
    before = fetch_transactions(database_url)

    refused = runner.invoke(app, ["merge-normalized", "--database-url", database_url])
    assert refused.exit_code == 1
    assert fetch_transactions(database_url) == before

    dry = _json(
        runner.invoke(
            app, ["merge-normalized", "--confirm", "--dry-run", "--database-url", database_url]
        )
    )
    assert dry["dryRun"] is True
    assert [g["canonical"] for g in dry["planned"]] == ["CUB FOODS"]
    assert fetch_transactions(database_url) == before

    applied = _json(
        runner.invoke(app, ["merge-normalized", "--confirm", "--database-url", database_url])
    )
    assert applied["transactionsUpdated"] == 1


def test_migrate_ids(database_url: str):
    amount = Decimal("46.43")
    legacy = identity_key("09/13/2025", "CUB FOODS", amount, scheme=IdentityScheme.LEGACY)
    seed_transactions(
        database_url,
        [{"id": legacy, "date": "09/13/2025", "merchant": "CUB FOODS", "amount": amount}],
    )

    assert runner.invoke(app, ["migrate-ids", "--database-url", database_url]).exit_code == 1

    payload = _json(
        runner.invoke(app, ["migrate-ids", "--confirm", "--database-url", database_url])
    )
    assert payload["migrated"] == 1
    assert [r.id for r in fetch_transactions(database_url)] == [
        identity_key("09/13/2025", "CUB FOODS", amount)
    ]
