from __future__ import annotations

import pytest

from finance_tracker.requests import (
    Analyze,
    ConfirmationRequiredError,
    Consolidate,
    Fix,
    InvalidRequestError,
    MergeNormalized,
    MigrateIdentities,
    parse_fixes,
    parse_request,
    require_confirmation,
)

_FIX = {"groupId": "g", "canonicalMerchant": "X", "transactionIds": ["a"]}


def test_parse_each_variant():
    assert isinstance(parse_request({"action": "analyze"}), Analyze)
    assert isinstance(parse_request({"action": "consolidate", "threshold": 0.9}), Consolidate)
    assert isinstance(parse_request({"action": "migrate_identities"}), MigrateIdentities)

    merge = parse_request({"action": "merge_normalized", "confirm": True, "autoFix": False})
    assert isinstance(merge, MergeNormalized)
    assert merge.confirm and not merge.auto_fix

    fix = parse_request(
        {
            "action": "fix",
            "fixes": [
                {"groupId": "g1", "canonicalMerchant": " NETFLIX ", "transactionIds": ["a", "b"]}
            ],
        }
    )
    assert isinstance(fix, Fix)
    (instruction,) = fix.fixes
    assert instruction.canonical_merchant == "NETFLIX"
    assert instruction.transaction_ids == ("a", "b")


def test_default_threshold():
    assert parse_request({"action": "analyze"}).threshold == 0.75


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"action": "delete_everything"},
        {"action": "analyze", "threshold": 0.2},
        {"action": "analyze", "unexpected": 1},
        {"action": "fix", "fixes": []},
        {"action": "fix", "fixes": [{**_FIX, "transactionIds": []}]},
        {"action": "fix", "fixes": [{**_FIX, "transactionIds": [" "]}]},
        {"action": "fix", "fixes": [{**_FIX, "canonicalMerchant": "  "}]},
    ],
)
def test_invalid_requests(payload):
    with pytest.raises(InvalidRequestError):
        parse_request(payload)


def test_parse_fixes_accepts_snake_case_names():
    request = parse_fixes(
        [{"group_id": "g1", "canonical_merchant": "NETFLIX", "transaction_ids": ["a"]}]
    )
    assert request.fixes[0].group_id == "g1"


def test_parse_fixes_rejects_non_list():
    with pytest.raises(InvalidRequestError):
        parse_fixes(None)


def test_require_confirmation():
    require_confirmation(MergeNormalized(confirm=True))
    with pytest.raises(ConfirmationRequiredError):
        require_confirmation(MigrateIdentities())
    # Confirmation errors are request errors too.
    assert issubclass(ConfirmationRequiredError, InvalidRequestError)
