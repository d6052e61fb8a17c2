"""Confidence policy layered over signal matches, including auto-promotion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Final

from app.config import settings
from app.models.discovery import SourceKind
from app.models.signals import CapabilityTag, SignalMatch
from app.services.scoring.keyword_rules import KeywordRuleTable

SOURCE_RELIABILITY: Final[dict[SourceKind, int]] = {
    SourceKind.HN_POST: 15,
    SourceKind.HN_COMMENT: 8,
    SourceKind.HN_PROFILE: 12,
    SourceKind.NEWS_ARTICLE: 18,
    SourceKind.REDDIT_POST: 12,
    SourceKind.REDDIT_COMMENT: 6,
    SourceKind.TWITTER: 10,
    SourceKind.STATUS_PAGE: 20,
    SourceKind.GITHUB_ISSUE: 15,
    SourceKind.LIST_ANALYSIS: 12,
    SourceKind.MANUAL: 10,
}
DOMAIN_QUALITY: Final[dict[str, int]] = {"source": 20, "url": 18, "mention": 12, "email": 10}
RECENCY_BUCKETS: Final[tuple[tuple[float, int], ...]] = (
    (24, 10),
    (72, 8),
    (168, 6),
    (720, 4),
)
UNKNOWN_RECENCY = 5
STALE_RECENCY = 2


@dataclass(frozen=True)
class SourceAssessment:
    """Review context describing how trustworthy the sighting is."""

    source_reliability: int
    domain_quality: int
    recency: int

    def as_dict(self) -> dict[str, int]:
        return {
            "source_reliability": self.source_reliability,
            "domain_quality": self.domain_quality,
            "recency": self.recency,
        }


@dataclass(frozen=True)
class ConfidenceResult:
    score: int
    level: str
    tags: tuple[CapabilityTag, ...]
    should_auto_promote: bool


def confidence_level(score: int) -> str:
    if score >= 80:
        return "very_high"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def recency_score(published_at: datetime | None, *, now: datetime | None = None) -> int:
    if published_at is None:
        return UNKNOWN_RECENCY
    reference = now or datetime.now(timezone.utc)
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    age_hours = (reference - published_at).total_seconds() / 3600
    for limit, points in RECENCY_BUCKETS:
        if age_hours < limit:
            return points
    return STALE_RECENCY


def assess_source(
    source_kind: SourceKind,
    *,
    domain_origin: str = "mention",
    published_at: datetime | None = None,
    now: datetime | None = None,
) -> SourceAssessment:
    origin = domain_origin.removeprefix("title_")
    return SourceAssessment(
        source_reliability=SOURCE_RELIABILITY.get(source_kind, 10),
        domain_quality=DOMAIN_QUALITY.get(origin, 10),
        recency=recency_score(published_at, now=now),
    )


class ConfidenceScorer:
    """Turns a SignalMatch into a bounded confidence and promotion decision.

    The keyword score is the confidence; source assessment is reported for
    reviewers but never alters the score, which keeps confidence monotonic in
    the matched keywords.
    """

    def __init__(self, table: KeywordRuleTable, *, auto_promote_threshold: int | None = None) -> None:
        threshold = (
            settings.auto_promote_threshold if auto_promote_threshold is None else auto_promote_threshold
        )
        if not 0 <= threshold <= 100:
            raise ValueError("auto_promote_threshold must be within [0, 100]")
        self._threshold = threshold
        self._rules = {rule.phrase: rule for rule in table.rules}

    @property
    def auto_promote_threshold(self) -> int:
        return self._threshold

    def score(self, match: SignalMatch) -> ConfidenceResult:
        score = max(0, min(100, match.score))
        return ConfidenceResult(
            score=score,
            level=confidence_level(score),
            tags=self.recommend_tags(match),
            should_auto_promote=self.should_auto_promote(score),
        )

    def should_auto_promote(self, score: int) -> bool:
        return score > 0 and score >= self._threshold

    def recommend_tags(self, match: SignalMatch) -> tuple[CapabilityTag, ...]:
        """Capability tags ordered by the summed weight of the rules that produced them."""
        weights: dict[CapabilityTag, int] = {}
        for phrase in match.matched_keywords:
            rule = self._rules.get(phrase)
            if rule is None:
                continue
            for tag in rule.tags:
                weights[tag] = weights.get(tag, 0) + rule.weight
        ordered = sorted(weights.items(), key=lambda item: (-item[1], item[0].value))
        return tuple(tag for tag, _ in ordered)
