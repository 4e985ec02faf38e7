"""Merchant-name normalization: strip address/phone/store-code contamination.

Statement parsers frequently glue location details onto the merchant name
(``"CUB FOODS #01693 1104 LAGOON AVE MINNEAPOLIS 55408 MN USA"``). The
normalizer truncates such strings at the first contamination marker so the
remaining prefix (``"CUB FOODS"``) can serve as an identity/clustering key.

Rules are tried in a fixed priority order (most specific first) and the string
is cut at the first rule that matches anywhere in it. A later, looser rule must
never claim text that an earlier rule owns, so there is no "best match"
search. Trailing parenthetical notes such as ``"(RETURN)"`` are always removed
first.

Known limitations: unlisted cities/street words are left in place, and names
with embedded store-code-like numbers get over-trimmed. Both are accepted
heuristic behavior.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from .logging_setup import get_logger

logger = get_logger("finance_tracker.normalizers")


@dataclass(frozen=True, slots=True)
class ContaminationRule:
    """A named truncation pattern; lower ``priority`` is tried first."""

    priority: int
    name: str
    pattern: re.Pattern[str]


_PARENTHETICAL_SUFFIX = re.compile(r"\s*\([^)]*\)\s*$")

_STREET_WORDS = (
    "WOOD|BLACK|OPTUM|LYNDALE|LAGOON|LAKE|LINDEN|2ND|1ST|3RD|4TH|5TH|WASHINGTON|"
    "FULTON|MERIDIAN|MCKNIGHT|HENNEPIN|BLOOMINGTON|AVE|ST|BLVD|DRIVE|STREET|"
    "CIRCLE|SUITE|STE|APT|FLOOR|FLO|ROAD|RD|WAY|LANE|LN|EAST|WEST|BRICKELL|RUA|"
    r"AV|AVENIDA|W\.|E\.|S\.|N\."
)

_CITIES = (
    r"MINNEAPOLIS|SAINT\s+PAUL|CHICAGO|NEW\s+YORK|SAN\s+FRANCISCO|DENVER|BROOKLYN|"
    r"MIAMI|SEATTLE|BOSTON|LOS\s+ANGELES|PHILADELPHIA|DALLAS|ATLANTA|HOUSTON|"
    r"PHOENIX|BARUERI|PORTO\s+ALEGRE|VANCOUVER|TALLINN|QUEBEC|MONTREAL|EDINBURGH|"
    r"SINGAPORE|WASHINGTON|MORRISVILLE|CEDAR\s+HILLS|SANTA\s+CLARA|LEAWOOD|"
    r"COON\s+RAPIDS|BURLINGAME|SYLMAR|EDEN\s+PRAIRIE|BLOOMINGTON|BURNSVILLE|EAGAN|"
    r"FALCON\s+HEIGHT|SOLANA\s+BEACH|SAINT\s+LOUIS|SAO\s+PAULO"
)

_STATES = "MN|WI|IL|CA|CO|NY|TX|FL|GA|OH|MA|PA|AZ|WA|NV|UT|NC|MO|DC"

# (priority, name, regex, flags). Letter-code and street-word rules are
# case-sensitive on purpose: lower-case words after a number are usually part
# of the business name.
_RULE_SPECS: tuple[tuple[int, str, str, int], ...] = (
    (10, "store_number", r"\s+(?:#\d+|\d{4,}(?=\s))", 0),
    (20, "letter_code", r"\s+[A-Z]{1,3}\d{3,}(?:\s|$)", 0),
    (30, "phone_number", r"\s+\d{7,10}(?:\s|$|-|/)", 0),
    (40, "building_number", rf"\s+\d{{1,4}}\s+(?:{_STREET_WORDS})", 0),
    (
        50,
        "directional_address",
        r"\s+\d+\s+(?:N|S|E|W|NW|NE|SE|SW)\s*\.?\s+"
        r"(?:STREET|ST|AVENUE|AVE|BLVD|BOULEVARD|DRIVE|DR|ROAD|RD|WAY|LANE|LN|CIRCLE|CIR)",
        0,
    ),
    (60, "zip_code", r"\s+\d{5}(?:\s|$)", 0),
    (70, "city_name", rf"\s+(?:{_CITIES})\b", re.IGNORECASE),
    (80, "state_code", rf"\s+(?:{_STATES})\s*(?:USA)?$", re.IGNORECASE),
    (
        90,
        "country_code",
        r"\s+(?:CANADA|CAN|BRAZIL|BRA|BRABRA|ISRISR|SGPSGP|DUBEST|LNDGBR|QC\s+CAN)\b",
        re.IGNORECASE,
    ),
    (100, "iberian_street", r"\s+(?:RUA|AV|AVENIDA|PÇA|PRAÇA)\b", re.IGNORECASE),
    (110, "mailbox", r"\s+(?:PMB|PO\s+BOX)\b", re.IGNORECASE),
    (120, "long_digit_run", r"\s+\d{8,}(?:\s|$)", 0),
)

RULES: tuple[ContaminationRule, ...] = tuple(
    ContaminationRule(priority=p, name=n, pattern=re.compile(rx, flags))
    for p, n, rx, flags in sorted(_RULE_SPECS, key=lambda spec: spec[0])
)


def normalize_with_rule(text: str) -> tuple[str, str | None]:
    """Return the normalized string and the name of the rule that cut it.

    The rule name is ``None`` when no contamination rule matched (a removed
    parenthetical suffix alone does not count as a rule).
    """

    normalized = _PARENTHETICAL_SUFFIX.sub("", text.strip())
    for rule in RULES:
        match = rule.pattern.search(normalized)
        if match is not None:
            return normalized[: match.start()].strip(), rule.name
    return normalized, None


def normalize(text: Any) -> Any:
    """Strip contamination from a merchant/description string.

    Pure and total: non-string or empty input is returned unchanged, and a
    string with no contamination comes back trimmed.

    >>> normalize("SLING.COM 9601 S MERIDIAN BLVD. ENGLEWOOD 80112 CO USA")
    'SLING.COM'
    """

    if not isinstance(text, str) or not text:
        return text
    return normalize_with_rule(text)[0]


# ---------------------------------------------------------------------------
# Contamination detection for freshly parsed records
# ---------------------------------------------------------------------------

_CONTAMINATION_HINTS = (
    re.compile(r"\d+\s+(?:ST|AVE|BLVD|ROAD|STREET|LANE|DRIVE|RD|DR|WAY)"),
    re.compile(r"\d{5}"),
    re.compile(r"\b(?:USA|MN|CA|CO|NY|TX|FL|IL)\b"),
)


def has_address_contamination(text: str | None) -> bool:
    """Return True when ``text`` carries obvious street/ZIP/state tokens."""

    if not text:
        return False
    return any(p.search(text) for p in _CONTAMINATION_HINTS)


def clean_description(text: str) -> str:
    """Normalize a parsed description only when it looks address-contaminated."""

    if not has_address_contamination(text):
        return text
    cleaned = normalize(text)
    if cleaned != text:
        logger.info("Cleaned contaminated merchant %r -> %r", text, cleaned)
    else:
        logger.warning("Address contamination detected but not stripped: %r", text)
    return cleaned


__all__ = [
    "ContaminationRule",
    "RULES",
    "clean_description",
    "has_address_contamination",
    "normalize",
    "normalize_with_rule",
]
