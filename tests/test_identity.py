from __future__ import annotations

import base64
from decimal import Decimal

import pytest

from finance_tracker.identity import (
    IdentityScheme,
    allocate_key,
    family_sort_key,
    format_amount,
    identity_key,
    split_key,
    transaction_key,
)


@pytest.mark.parametrize(
    ("amount", "expected"),
    [
        (Decimal("46.43"), "46.43"),
        (Decimal("46.40"), "46.4"),
        (Decimal("50.00"), "50"),
        (Decimal("0.10"), "0.1"),
        (46.43, "46.43"),
        (1200, "1200"),
        ("7.5", "7.5"),
    ],
)
def test_format_amount(amount, expected):
    assert format_amount(amount) == expected


def test_canonical_key_encodes_fields():
    key = identity_key("09/13/2025", "CUB FOODS", Decimal("46.43"))
    assert base64.b64decode(key).decode() == "09/13/2025CUB FOODS46.43"


def test_key_is_pure():
    assert identity_key("09/13/2025", "CUB FOODS", 46.43) == identity_key(
        "09/13/2025", "CUB FOODS", Decimal("46.43")
    )


def test_changing_any_field_changes_key():
    base = identity_key("09/13/2025", "CUB FOODS", Decimal("46.43"))
    assert identity_key("09/14/2025", "CUB FOODS", Decimal("46.43")) != base
    assert identity_key("09/13/2025", "CUB FOOD", Decimal("46.43")) != base
    assert identity_key("09/13/2025", "CUB FOODS", Decimal("46.44")) != base


def test_legacy_key_folds_address_and_truncates():
    legacy = identity_key(
        "09/13/2025",
        "CUB FOODS",
        Decimal("46.43"),
        address="1104 LAGOON AVE",
        scheme=IdentityScheme.LEGACY,
    )
    assert len(legacy) == 20
    full = base64.b64encode(b"09/13/2025CUB FOODS1104 LAGOON AVE46.43").decode()
    assert legacy == full[:20]
    assert legacy != identity_key("09/13/2025", "CUB FOODS", Decimal("46.43"))


def test_transaction_key_normalizes_merchant():
    raw = "CUB FOODS #01693 1104 LAGOON AVE MINNEAPOLIS 55408 MN USA"
    assert transaction_key("09/13/2025", raw, Decimal("46.43")) == identity_key(
        "09/13/2025", "CUB FOODS", Decimal("46.43")
    )


def test_allocate_key_picks_smallest_free_suffix():
    base = identity_key("09/13/2025", "CUB FOODS", Decimal("46.43"))
    assert allocate_key(base, set()) == base
    assert allocate_key(base, {base}) == f"{base}-1"
    assert allocate_key(base, {base, f"{base}-1", f"{base}-3"}) == f"{base}-2"
    # A freed base slot is reused before any suffix.
    assert allocate_key(base, {f"{base}-1"}) == base


def test_split_and_sort_keys():
    base = identity_key("09/13/2025", "CUB FOODS", Decimal("46.43"))
    assert split_key(base) == (base, 0)
    assert split_key(f"{base}-12") == (base, 12)
    keys = [f"{base}-10", f"{base}-2", base, f"{base}-1"]
    assert sorted(keys, key=family_sort_key) == [base, f"{base}-1", f"{base}-2", f"{base}-10"]


def test_base64_keys_never_contain_a_dash():
    key = identity_key("12/31/2025", "ÄÖÜ ~~~ ???", Decimal("999999.99"))
    assert "-" not in key
