"""Deterministic transaction identity keys.

A transaction's primary key is derived from ``(date, merchant, amount)`` so a
re-import of the same logical transaction collides on the primary key instead
of producing a silent duplicate.

Two schemes exist:

- ``CANONICAL``: ``base64(date + merchant + amount)``, untruncated. Used for
  every write.
- ``LEGACY``: ``base64(date + merchant + address + amount)[:20]``. Older rows
  carry it; :mod:`finance_tracker.migration` rewrites them once.

Distinct records sharing a base key are stored as ``<base>-1``, ``<base>-2``,
and so on. ``-`` never occurs in the base64 alphabet, so a key's family (its
base plus suffixed siblings) is unambiguous.
"""

from __future__ import annotations

import base64
from collections.abc import Collection
from decimal import Decimal
from enum import StrEnum
from typing import Any

from .normalizers import normalize

_LEGACY_LENGTH = 20


class IdentityScheme(StrEnum):
    LEGACY = "legacy"
    CANONICAL = "canonical"


def format_amount(amount: Any) -> str:
    """Shortest plain decimal rendering (``46.43``, ``46.4``, ``50``)."""

    d = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if d == d.to_integral_value():
        return format(d.quantize(Decimal(1)), "f")
    return format(d.normalize(), "f")


def identity_key(
    date: str,
    merchant: str,
    amount: Any,
    *,
    address: str | None = None,
    scheme: IdentityScheme = IdentityScheme.CANONICAL,
) -> str:
    """Encode the fields exactly as given; callers pass a normalized merchant."""

    if scheme is IdentityScheme.LEGACY:
        raw = f"{date}{merchant}{address or ''}{format_amount(amount)}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")[:_LEGACY_LENGTH]
    raw = f"{date}{merchant}{format_amount(amount)}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def transaction_key(date: str, merchant: str, amount: Any) -> str:
    """Canonical base key for a transaction whose merchant is not yet normalized."""

    return identity_key(date, normalize(merchant), amount)


def split_key(key: str) -> tuple[str, int]:
    """Return ``(base, suffix)``; the unsuffixed base has suffix ``0``."""

    base, sep, tail = key.rpartition("-")
    if sep and tail.isdigit() and base:
        return base, int(tail)
    return key, 0


def suffixed(base: str, n: int) -> str:
    return base if n == 0 else f"{base}-{n}"


def allocate_key(base: str, taken: Collection[str]) -> str:
    """Return ``base`` when free, else ``base-N`` for the smallest free ``N >= 1``."""

    if base not in taken:
        return base
    n = 1
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def family_sort_key(key: str) -> tuple[str, int]:
    """Order keys base first, then by numeric suffix."""

    return split_key(key)


__all__ = [
    "IdentityScheme",
    "allocate_key",
    "family_sort_key",
    "format_amount",
    "identity_key",
    "split_key",
    "suffixed",
    "transaction_key",
]
