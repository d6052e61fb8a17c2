"""Company-name to relationship-graph search-term normalization.

The graph indexes people by free-text employer name, so a domain alone is a
poor query. Terms are best-effort; an empty lookup means "no known path".
"""

from __future__ import annotations

import re
from typing import Final

LEGAL_SUFFIX_PATTERN = re.compile(
    r"[,\s]+(?:inc|llc|ltd|limited|corp|corporation|company|co|gmbh|plc|s\.?a)\.?$",
    flags=re.IGNORECASE,
)
LEADING_ARTICLE_PATTERN = re.compile(r"^the\s+", flags=re.IGNORECASE)
NON_NAME_CHARS = re.compile(r"[^\w&'+ -]+")

# Collapsed lowercase key -> how the graph spells the employer.
KNOWN_COMPOUNDS: Final[dict[str, str]] = {
    "livenation": "Live Nation",
    "livenationentertainment": "Live Nation",
    "ticketmaster": "Ticketmaster",
    "stubhub": "StubHub",
    "seatgeek": "SeatGeek",
    "vividseats": "Vivid Seats",
    "eventbrite": "Eventbrite",
    "draftkings": "DraftKings",
    "fanduel": "FanDuel",
    "drizly": "Drizly",
    "gopuff": "Gopuff",
    "doordash": "DoorDash",
    "ubereats": "Uber Eats",
    "discordapp": "Discord",
}


def clean_company_name(name: str | None) -> str:
    """Strip legal suffixes, a leading "The" and stray punctuation."""
    if not name:
        return ""
    cleaned = " ".join(name.split())
    previous = None
    while previous != cleaned:
        previous = cleaned
        cleaned = LEGAL_SUFFIX_PATTERN.sub("", cleaned).strip(" ,.")
    cleaned = LEADING_ARTICLE_PATTERN.sub("", cleaned)
    return " ".join(NON_NAME_CHARS.sub(" ", cleaned).split())


def domain_stem(domain: str | None) -> str:
    if not domain:
        return ""
    host = domain.strip().lower()
    if host.startswith("www."):
        host = host[4:]
    return host.split(".", 1)[0]


def _collapse(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def to_search_terms(company_name: str | None, domain: str | None) -> list[str]:
    """Ordered, de-duplicated candidate queries for one company.

    Known compounds come first, then the cleaned display name, then the raw
    domain stem as the fallback.
    """
    cleaned = clean_company_name(company_name)
    stem = domain_stem(domain)
    candidates: list[str] = []
    for key in (_collapse(cleaned), stem):
        if key and key in KNOWN_COMPOUNDS:
            candidates.append(KNOWN_COMPOUNDS[key])
    if cleaned:
        candidates.append(cleaned)
    if stem:
        candidates.append(stem)

    seen: set[str] = set()
    ordered: list[str] = []
    for candidate in candidates:
        key = candidate.lower()
        if key not in seen:
            seen.add(key)
            ordered.append(candidate)
    return ordered
