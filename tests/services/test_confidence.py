from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.discovery import SourceKind
from app.models.signals import CapabilityTag
from app.services.scoring.confidence import (
    STALE_RECENCY,
    UNKNOWN_RECENCY,
    ConfidenceScorer,
    assess_source,
    confidence_level,
    recency_score,
)
from app.services.scoring.signal_matcher import SignalMatcher

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def matcher(rules_table) -> SignalMatcher:
    return SignalMatcher(rules_table)


def test_confidence_equals_keyword_score(rules_table, matcher):
    scorer = ConfidenceScorer(rules_table, auto_promote_threshold=70)
    result = scorer.score(matcher.match("A crawler and a scraper hit our site."))

    assert result.score == 20 + (3 + 4) * 8
    assert result.level == "high"
    assert result.should_auto_promote


def test_threshold_is_inclusive(rules_table):
    scorer = ConfidenceScorer(rules_table, auto_promote_threshold=70)
    assert scorer.should_auto_promote(70)
    assert scorer.should_auto_promote(100)
    assert not scorer.should_auto_promote(69)


def test_zero_never_auto_promotes(rules_table):
    scorer = ConfidenceScorer(rules_table, auto_promote_threshold=0)
    assert not scorer.should_auto_promote(0)
    assert scorer.should_auto_promote(1)


def test_threshold_must_be_on_scale(rules_table):
    with pytest.raises(ValueError):
        ConfidenceScorer(rules_table, auto_promote_threshold=101)


def test_recommended_tags_ordered_by_weight(rules_table, matcher):
    scorer = ConfidenceScorer(rules_table)
    match = matcher.match("Age verification and age gate rules, plus sms pumping.")
    assert scorer.recommend_tags(match) == (CapabilityTag.AGE_VERIFICATION, CapabilityTag.VOICE_CAPTCHA)


@pytest.mark.parametrize(
    "score, level",
    [(0, "low"), (39, "low"), (40, "medium"), (60, "high"), (80, "very_high"), (100, "very_high")],
)
def test_confidence_level_buckets(score, level):
    assert confidence_level(score) == level


def test_recency_buckets():
    assert recency_score(None, now=NOW) == UNKNOWN_RECENCY
    assert recency_score(NOW - timedelta(hours=2), now=NOW) == 10
    assert recency_score(NOW - timedelta(days=2), now=NOW) == 8
    assert recency_score(NOW - timedelta(days=5), now=NOW) == 6
    assert recency_score(NOW - timedelta(days=20), now=NOW) == 4
    assert recency_score(NOW - timedelta(days=90), now=NOW) == STALE_RECENCY
    assert recency_score(datetime(2026, 3, 1, 11, 0), now=NOW) == 10


def test_assess_source_strips_title_prefix():
    assessment = assess_source(
        SourceKind.NEWS_ARTICLE, domain_origin="title_url", published_at=NOW, now=NOW
    )
    assert assessment.as_dict() == {"source_reliability": 18, "domain_quality": 18, "recency": 10}
