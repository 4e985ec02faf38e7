from __future__ import annotations

import base64
from decimal import Decimal

import pytest
from db.client import session_scope
from sqlalchemy.exc import OperationalError

from finance_tracker import persistence
from finance_tracker.config import DedupSettings
from finance_tracker.consolidation import (
    analyze,
    apply_fixes,
    bucket_id,
    consolidate,
    handle_request,
    merge_normalized,
    recommendation,
    score_recommendation,
)
from finance_tracker.identity import identity_key
from finance_tracker.models import AnalysisReport, Confidence, DuplicateGroup, DuplicatePair
from finance_tracker.requests import (
    ConfirmationRequiredError,
    InvalidRequestError,
    parse_request,
)
from finance_tracker.similarity import score
from tests.helpers.db import (
    add_statement,
    fetch_statements,
    fetch_transactions,
    seed_transactions,
)

AMOUNT = Decimal("15.49")
SETTINGS = DedupSettings()


@pytest.fixture()
def netflix_ledger(database_url: str) -> dict[str, object]:
    """NETFLIX twice on statement 1, NETFLIX.COM once on statement 2 (same day)."""

    s1 = add_statement(database_url, month="August 2025")
    s2 = add_statement(database_url, month="September 2025")
    ids = seed_transactions(
        database_url,
        [
            {"date": "09/13/2025", "merchant": "NETFLIX", "amount": AMOUNT, "statement_id": s1},
            {"date": "10/13/2025", "merchant": "NETFLIX", "amount": AMOUNT, "statement_id": s1},
            {"date": "09/13/2025", "merchant": "NETFLIX.COM", "amount": AMOUNT, "statement_id": s2},
            {"date": "09/20/2025", "merchant": "SPOTIFY", "amount": "10.99", "statement_id": s2},
        ],
    )
    return {"url": database_url, "s1": s1, "s2": s2, "ids": ids}


def test_recommendation_tiers():
    def group(a: str, b: str) -> DuplicateGroup:
        pair = DuplicatePair(merchant1=a, merchant2=b, score=score(a, b))
        return DuplicateGroup(canonical=a, variants=(a, b), pairs=(pair,))

    assert recommendation(group("netflix", "netflix"))[0] is Confidence.HIGH
    assert recommendation(group("abcdef", "uvwxyz"))[0] is Confidence.LOW


@pytest.mark.parametrize(
    ("value", "tier", "text"),
    [
        (0.9, Confidence.HIGH, "Safe to auto-consolidate"),
        (0.85, Confidence.HIGH, "Safe to auto-consolidate"),
        (0.8, Confidence.MEDIUM, "Review before consolidating"),
        (0.5, Confidence.LOW, "Manual review recommended"),
    ],
)
def test_score_recommendation_per_pair(value, tier, text):
    assert score_recommendation(value) == (tier, text)


def test_bucket_id_is_url_safe_and_reversible():
    gid = bucket_id("09/13/2025", Decimal("15.49"))
    assert "/" not in gid and "+" not in gid
    assert base64.urlsafe_b64decode(gid).decode() == "09/13/2025|15.49"


def test_analyze_reports_groups_and_buckets(netflix_ledger):
    with session_scope(database_url=netflix_ledger["url"]) as session:
        report = analyze(session, settings=SETTINGS)

    assert report.merchants_analyzed == 3
    assert report.threshold == 0.75
    (group,) = report.groups
    # The more frequent spelling wins.
    assert group.canonical == "NETFLIX"
    assert set(group.variants) == {"NETFLIX", "NETFLIX.COM"}
    assert not group.needs_review

    (bucket,) = report.buckets
    assert bucket.date == "09/13/2025"
    assert bucket.merchants == ("NETFLIX", "NETFLIX.COM")
    assert len(bucket.transactions) == 2
    assert bucket.group_id == bucket_id("09/13/2025", bucket.amount)


def test_analyze_is_read_only(netflix_ledger):
    before = fetch_transactions(netflix_ledger["url"])
    with session_scope(database_url=netflix_ledger["url"]) as session:
        analyze(session, settings=SETTINGS)
    assert fetch_transactions(netflix_ledger["url"]) == before


def test_analyze_rejects_out_of_band_threshold(netflix_ledger):
    with session_scope(database_url=netflix_ledger["url"]) as session:
        with pytest.raises(ValueError):
            analyze(session, 0.99, settings=SETTINGS)


def test_consolidate_merges_unambiguous_group(netflix_ledger):
    url = netflix_ledger["url"]
    with session_scope(database_url=url) as session:
        summary = consolidate(session, settings=SETTINGS)

    assert [g.canonical for g in summary.planned] == ["NETFLIX"]
    assert summary.flagged == ()
    assert summary.successful == 1
    # NETFLIX.COM on 09/13 came from another statement: same charge, dropped.
    assert summary.transactions_deleted == 1

    rows = fetch_transactions(url)
    assert {r.merchant for r in rows} == {"NETFLIX", "SPOTIFY"}
    assert len(rows) == 3
    counts = {s.id: s.transaction_count for s in fetch_statements(url)}
    assert counts == {netflix_ledger["s1"]: 2, netflix_ledger["s2"]: 1}


def test_consolidate_leaves_flagged_groups_alone(database_url: str):
    seed_transactions(
        database_url,
        [
            {"date": "09/13/2025", "merchant": "CUB FOODS", "amount": "46.43"},
            {"date": "09/14/2025", "merchant": "CUB FOODS #01693", "amount": "12.00"},
            {"date": "09/15/2025", "merchant": "CUB FOODS 1104 LAGOON AVE", "amount": "8.00"},
        ],
    )
    before = fetch_transactions(database_url)
    with session_scope(database_url=database_url) as session:
        summary = consolidate(session, settings=SETTINGS)

    assert summary.planned == ()
    assert len(summary.flagged) == 1
    assert summary.flagged[0].needs_review
    assert fetch_transactions(database_url) == before


def test_consolidate_respects_auto_score(netflix_ledger):
    strict = DedupSettings(auto_consolidate_score=1.01)
    with session_scope(database_url=netflix_ledger["url"]) as session:
        summary = consolidate(session, settings=strict)
    assert summary.results == ()
    assert len(summary.flagged) == 1


def test_apply_fixes_rekeys_and_reports_per_group(database_url: str):
    s1 = add_statement(database_url)
    (_, ncom_id) = seed_transactions(
        database_url,
        [
            {"date": "09/13/2025", "merchant": "NETFLIX", "amount": AMOUNT},
            {"date": "10/13/2025", "merchant": "NETFLIX.COM", "amount": AMOUNT},
        ],
        statement_id=s1,
    )

    with session_scope(database_url=database_url) as session:
        summary = apply_fixes(
            session,
            [
                {"groupId": "g1", "canonicalMerchant": "NETFLIX", "transactionIds": [ncom_id]},
                {"groupId": "g2", "canonicalMerchant": "NETFLIX", "transactionIds": ["missing"]},
            ],
        )

    assert [r.success for r in summary.results] == [True, False]
    assert summary.results[0].updated == 1
    assert summary.results[1].error == "No matching transactions"
    assert summary.transactions_updated == 1
    ids = {r.id for r in fetch_transactions(database_url)}
    assert identity_key("10/13/2025", "NETFLIX", AMOUNT) in ids
    assert ncom_id not in ids


def test_failed_group_rolls_back_and_batch_continues(database_url: str, monkeypatch):
    s1 = add_statement(database_url, month="August 2025")
    s2 = add_statement(database_url, month="September 2025")
    seed_transactions(
        database_url,
        [{"date": "09/13/2025", "merchant": "NETFLIX", "amount": AMOUNT}],
        statement_id=s1,
    )
    dup_id, move_id, spotify_id = seed_transactions(
        database_url,
        [
            {"date": "09/13/2025", "merchant": "NETFLIX.COM", "amount": AMOUNT},
            {"date": "10/13/2025", "merchant": "NETFLIX.COM", "amount": AMOUNT},
            {"date": "09/20/2025", "merchant": "SPOTIFY.COM", "amount": "10.99"},
        ],
        statement_id=s2,
    )
    before = fetch_transactions(database_url)

    real_rekey = persistence.rekey_transaction

    def flaky_rekey(session, old_id, new_id, merchant):
        if old_id == move_id:
            raise OperationalError("UPDATE transactions", {}, Exception("database is locked"))
        return real_rekey(session, old_id, new_id, merchant)

    monkeypatch.setattr(persistence, "rekey_transaction", flaky_rekey)

    with session_scope(database_url=database_url) as session:
        summary = apply_fixes(
            session,
            [
                {
                    "groupId": "netflix",
                    "canonicalMerchant": "NETFLIX",
                    "transactionIds": [dup_id, move_id],
                },
                {
                    "groupId": "spotify",
                    "canonicalMerchant": "SPOTIFY",
                    "transactionIds": [spotify_id],
                },
            ],
        )

    failed, applied = summary.results
    assert failed.success is False
    assert "database is locked" in failed.error
    assert applied.success is True and applied.updated == 1
    assert summary.transactions_deleted == 0

    after = {r.id: r for r in fetch_transactions(database_url)}
    # The netflix group's delete of the cross-statement duplicate was undone.
    assert dup_id in after and move_id in after
    assert [r for r in before if r.id != spotify_id] == [
        r for r in fetch_transactions(database_url) if r.merchant != "SPOTIFY"
    ]
    assert after[identity_key("09/20/2025", "SPOTIFY", Decimal("10.99"))].merchant == "SPOTIFY"


def test_apply_fixes_validates_whole_list_first(netflix_ledger):
    url = netflix_ledger["url"]
    before = fetch_transactions(url)
    good = {
        "groupId": "g1",
        "canonicalMerchant": "NETFLIX",
        "transactionIds": [netflix_ledger["ids"][2]],
    }
    bad = {"groupId": "g2", "canonicalMerchant": "  ", "transactionIds": ["x"]}

    with session_scope(database_url=url) as session:
        with pytest.raises(InvalidRequestError):
            apply_fixes(session, [good, bad])
    assert fetch_transactions(url) == before


def test_merge_normalized_dry_run_then_apply(database_url: str):
    seed_transactions(
        database_url,
        [
            {"date": "09/13/2025", "merchant": "CUB FOODS", "amount": "46.43"},
            {"date": "09/20/2025", "merchant": "CUB FOODS #01693", "amount": "46.43"},
        ],
    )
    before = fetch_transactions(database_url)

    with session_scope(database_url=database_url) as session:
        dry = merge_normalized(session, auto_fix=False)
    assert dry.dry_run
    assert [g.canonical for g in dry.planned] == ["CUB FOODS"]
    assert fetch_transactions(database_url) == before

    with session_scope(database_url=database_url) as session:
        applied = merge_normalized(session)
    assert not applied.dry_run
    assert applied.transactions_updated == 1
    assert {r.merchant for r in fetch_transactions(database_url)} == {"CUB FOODS"}


@pytest.mark.parametrize("action", ["merge_normalized", "migrate_identities"])
def test_destructive_requests_need_confirmation(database_url: str, action: str):
    request = parse_request({"action": action})
    with session_scope(database_url=database_url) as session:
        with pytest.raises(ConfirmationRequiredError):
            handle_request(session, request)


def test_handle_request_dispatches_analyze(netflix_ledger):
    request = parse_request({"action": "analyze", "threshold": 0.8})
    with session_scope(database_url=netflix_ledger["url"]) as session:
        result = handle_request(session, request, settings=SETTINGS)
    assert isinstance(result, AnalysisReport)
    assert result.threshold == 0.8
