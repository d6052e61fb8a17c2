"""Resolve canonical company domains from URLs and free text."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Final
from urllib.parse import urlsplit

from app.config import settings

DEFAULT_BLOCKLIST: Final[frozenset[str]] = frozenset(
    {
        # social / platforms
        "github.com", "gitlab.com", "bitbucket.org", "medium.com", "substack.com",
        "twitter.com", "x.com", "linkedin.com", "facebook.com", "instagram.com",
        "youtube.com", "reddit.com", "discord.com", "discord.gg", "slack.com",
        "telegram.org", "t.me", "whatsapp.com",
        # news
        "news.ycombinator.com", "ycombinator.com", "techcrunch.com", "wired.com",
        "theverge.com", "arstechnica.com", "engadget.com", "cnet.com", "zdnet.com",
        "venturebeat.com", "reuters.com", "bloomberg.com", "wsj.com", "nytimes.com",
        "bbc.com", "bbc.co.uk", "cnn.com", "theguardian.com", "forbes.com",
        "businessinsider.com",
        # infrastructure
        "google.com", "googleapis.com", "gstatic.com", "amazon.com", "amazonaws.com",
        "cloudflare.com", "cloudfront.net", "fastly.net", "akamai.com", "akamaized.net",
        "microsoft.com", "azure.com", "apple.com", "icloud.com",
        # dev tools / docs
        "stackoverflow.com", "stackexchange.com", "npmjs.com", "pypi.org", "rubygems.org",
        "notion.so", "figma.com", "miro.com", "trello.com", "asana.com", "atlassian.com",
        # hosting / blogs / files
        "wordpress.com", "blogger.com", "blogspot.com", "squarespace.com", "wix.com",
        "ghost.io", "hashnode.com", "dev.to", "hackernoon.com", "dropbox.com", "box.com",
        # shorteners
        "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly",
        # placeholders / archives / reference
        "example.com", "example.org", "test.com", "localhost", "archive.org", "archive.is",
        "archive.today", "wikipedia.org", "wikimedia.org",
    }
)

# Platforms that are prospects in their own right despite looking generic.
DEFAULT_ALLOWLIST: Final[frozenset[str]] = frozenset(
    {"reddit.com", "discord.com", "slack.com", "notion.so", "figma.com"}
)

URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", flags=re.IGNORECASE)
MENTION_PATTERN = re.compile(
    r"\b(?:[a-z0-9][-a-z0-9]*\.)+(?:com|org|net|io|co|ai|app|dev|tech|cloud|so)\b",
    flags=re.IGNORECASE,
)
EMAIL_PATTERN = re.compile(r"[a-z0-9._%+-]+@([a-z0-9.-]+\.[a-z]{2,})", flags=re.IGNORECASE)
IPV4_PATTERN = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")
URL_TRAILING_PUNCTUATION = ".,;:!?)'\""

URL_CONFIDENCE = 0.9
MENTION_CONFIDENCE = 0.7
EMAIL_CONFIDENCE = 0.6
SOURCE_URL_CONFIDENCE = 0.95
TITLE_BOOST = 0.1


@dataclass(frozen=True)
class ExtractedDomain:
    domain: str
    origin: str
    confidence: float


def normalize_domain(value: str | None) -> str | None:
    """Lowercase host with scheme, path, port and leading ``www.`` removed."""
    if not value:
        return None
    candidate = value.strip().lower()
    if not candidate:
        return None
    if "://" in candidate:
        candidate = urlsplit(candidate).hostname or ""
    else:
        candidate = candidate.split("/", 1)[0]
    candidate = candidate.split("@")[-1].split(":", 1)[0]
    if candidate.startswith("www."):
        candidate = candidate[4:]
    candidate = candidate.rstrip("./")
    return candidate or None


def company_name_from_domain(domain: str) -> str:
    """``acme-corp.com`` -> ``Acme Corp``."""
    stem = domain.split(".", 1)[0]
    words = [word for word in re.split(r"[-_]+", stem) if word]
    return " ".join(word.capitalize() for word in words) or domain


class EntityResolver:
    """Turns URLs and mentions into canonical company domains.

    Blocked domains (and their subdomains) never resolve unless explicitly
    allowlisted. ``max_candidates`` bounds how many domains one text blob can
    fan out into.
    """

    def __init__(
        self,
        *,
        blocklist: Iterable[str] | None = None,
        allowlist: Iterable[str] | None = None,
        max_candidates: int | None = None,
    ) -> None:
        self._blocklist = frozenset(blocklist) if blocklist is not None else DEFAULT_BLOCKLIST
        self._allowlist = frozenset(allowlist) if allowlist is not None else DEFAULT_ALLOWLIST
        self._max_candidates = settings.max_domains_per_text if max_candidates is None else max_candidates
        if self._max_candidates < 1:
            raise ValueError("max_candidates must be >= 1")

    def is_company_domain(self, domain: str) -> bool:
        if domain in self._allowlist:
            return True
        if "." not in domain or IPV4_PATTERN.match(domain):
            return False
        if domain in self._blocklist:
            return False
        return not any(domain.endswith(f".{blocked}") for blocked in self._blocklist)

    def resolve(self, value: str | None) -> str | None:
        """Normalized domain for a URL or bare host, or None when it is not a company."""
        domain = normalize_domain(value)
        if domain is None or not self.is_company_domain(domain):
            return None
        return domain

    def extract(self, text: str | None) -> list[ExtractedDomain]:
        """URLs first, then bare mentions, then email domains; capped and deduplicated."""
        if not text:
            return []
        found: dict[str, ExtractedDomain] = {}
        candidates: list[tuple[str, str, float]] = []
        candidates.extend(
            (match.group(0).rstrip(URL_TRAILING_PUNCTUATION), "url", URL_CONFIDENCE)
            for match in URL_PATTERN.finditer(text)
        )
        candidates.extend(
            (match.group(0), "mention", MENTION_CONFIDENCE) for match in MENTION_PATTERN.finditer(text)
        )
        candidates.extend(
            (match.group(1), "email", EMAIL_CONFIDENCE) for match in EMAIL_PATTERN.finditer(text)
        )
        for raw, origin, confidence in candidates:
            if len(found) >= self._max_candidates:
                break
            domain = self.resolve(raw)
            if domain and domain not in found:
                found[domain] = ExtractedDomain(domain=domain, origin=origin, confidence=confidence)
        return list(found.values())

    def extract_from_source(
        self, source_ref: str | None, title: str | None, text: str | None
    ) -> list[ExtractedDomain]:
        """Source URL domain, then title mentions (boosted), then body mentions."""
        found: dict[str, ExtractedDomain] = {}

        def _add(entry: ExtractedDomain) -> None:
            if len(found) < self._max_candidates and entry.domain not in found:
                found[entry.domain] = entry

        source_domain = self.resolve(source_ref) if source_ref and "://" in source_ref else None
        if source_domain:
            _add(ExtractedDomain(source_domain, "source", SOURCE_URL_CONFIDENCE))
        for entry in self.extract(title):
            boosted = min(SOURCE_URL_CONFIDENCE, round(entry.confidence + TITLE_BOOST, 2))
            _add(ExtractedDomain(entry.domain, f"title_{entry.origin}", boosted))
        for entry in self.extract(text):
            _add(entry)
        return list(found.values())

    def primary_domain(self, text: str | None) -> str | None:
        extracted = self.extract(text)
        return extracted[0].domain if extracted else None
