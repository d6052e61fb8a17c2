"""Weighted keyword matching over free text."""

from __future__ import annotations

import html
import re
from collections.abc import Iterable

from app.models.signals import CapabilityTag, KeywordCategory, KeywordRule, SignalMatch
from app.services.scoring.keyword_rules import KeywordRuleTable

TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")
DEFAULT_CONTEXT_RADIUS = 200


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace so phrase containment is stable."""
    return WHITESPACE_PATTERN.sub(" ", text or "").strip().lower()


def strip_html(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", html.unescape(TAG_PATTERN.sub(" ", text or ""))).strip()


class SignalMatcher:
    """Scores text against an immutable KeywordRuleTable.

    ``score = min(100, base + sum(weight * multiplier))`` over distinct matched
    phrases, so extra hits never lower the score and never exceed 100. No
    match yields 0, which callers treat as "no signal".
    """

    def __init__(self, table: KeywordRuleTable) -> None:
        self._table = table
        self._weights = {rule.phrase: rule.weight for rule in table.rules}

    @property
    def table(self) -> KeywordRuleTable:
        return self._table

    def match(self, text: str) -> SignalMatch:
        haystack = normalize_text(strip_html(text))
        if not haystack:
            return SignalMatch()
        hits = [rule for rule in self._table.rules if rule.phrase in haystack]
        return self.score_rules(hits)

    def score_rules(self, rules: Iterable[KeywordRule]) -> SignalMatch:
        matched: dict[str, KeywordRule] = {}
        for rule in rules:
            matched.setdefault(rule.phrase, rule)
        if not matched:
            return SignalMatch()

        tags: dict[CapabilityTag, None] = {}
        categories: dict[KeywordCategory, int] = {}
        total_weight = 0
        for rule in matched.values():
            total_weight += rule.weight
            categories[rule.category] = categories.get(rule.category, 0) + rule.weight
            for tag in sorted(rule.tags, key=lambda item: item.value):
                tags.setdefault(tag, None)

        score = min(100, self._table.base_score + total_weight * self._table.multiplier)
        # max() keeps the first category on ties.
        primary = max(categories, key=lambda category: categories[category])
        return SignalMatch(
            matched_keywords=list(matched),
            tags=list(tags),
            categories=categories,
            total_weight=total_weight,
            score=score,
            primary_category=primary,
        )

    def weight_of(self, phrase: str) -> int:
        return self._weights.get(phrase.lower(), 0)

    def trigger_context(
        self, text: str, match: SignalMatch, *, radius: int = DEFAULT_CONTEXT_RADIUS
    ) -> str:
        """Excerpt around the highest-weight matched phrase."""
        if not match.matched_keywords:
            return ""
        best = max(match.matched_keywords, key=self.weight_of)
        return extract_trigger_context(text, best, radius=radius)


def extract_trigger_context(text: str, phrase: str, *, radius: int = DEFAULT_CONTEXT_RADIUS) -> str:
    """Return the HTML-stripped text surrounding the first occurrence of ``phrase``."""
    clean = strip_html(text)
    if not clean:
        return ""
    position = clean.lower().find(phrase.lower())
    if position < 0:
        return clean[: radius * 2].strip() + ("..." if len(clean) > radius * 2 else "")
    start = max(0, position - radius)
    end = min(len(clean), position + len(phrase) + radius)
    excerpt = clean[start:end].strip()
    if start > 0:
        excerpt = f"...{excerpt}"
    if end < len(clean):
        excerpt = f"{excerpt}..."
    return excerpt
