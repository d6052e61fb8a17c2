"""Scoring engine facade wiring the rule table, scorers and review service."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

from app.config import settings
from app.models.discovery import Discovery, SourceKind
from app.models.review import TransitionResult
from app.models.signals import SignalMatch
from app.services.scoring.confidence import ConfidenceResult, ConfidenceScorer, assess_source
from app.services.scoring.entity_resolver import EntityResolver, company_name_from_domain
from app.services.scoring.errors import MalformedInputError
from app.services.scoring.keyword_rules import KeywordRuleTable, load_rules
from app.services.scoring.repositories import ProspectingRepository, build_repository
from app.services.scoring.review import ReviewService
from app.services.scoring.signal_matcher import SignalMatcher

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TextEvaluation:
    """Discoveries derived from one candidate text, not yet persisted."""

    match: SignalMatch
    confidence: ConfidenceResult
    discoveries: tuple[Discovery, ...]


class ScoringEngine:
    """Pure scoring components plus the review service over one repository.

    Collaborators are passed in explicitly; ``from_settings`` only fills the
    defaults a deployed process would use.
    """

    def __init__(
        self,
        table: KeywordRuleTable,
        repository: ProspectingRepository,
        *,
        resolver: EntityResolver | None = None,
        auto_promote_threshold: int | None = None,
        min_text_length: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._table = table
        self._matcher = SignalMatcher(table)
        self._scorer = ConfidenceScorer(table, auto_promote_threshold=auto_promote_threshold)
        self._resolver = resolver or EntityResolver()
        self._repository = repository
        self._min_text_length = settings.min_text_length if min_text_length is None else min_text_length
        self._review = ReviewService(repository, auto_promote=self._scorer.should_auto_promote, clock=clock)

    @classmethod
    def from_settings(
        cls, *, repository: ProspectingRepository | None = None, rules_path: Path | None = None
    ) -> ScoringEngine:
        table = load_rules(rules_path)
        return cls(table, repository or build_repository())

    @property
    def table(self) -> KeywordRuleTable:
        return self._table

    @property
    def matcher(self) -> SignalMatcher:
        return self._matcher

    @property
    def scorer(self) -> ConfidenceScorer:
        return self._scorer

    @property
    def resolver(self) -> EntityResolver:
        return self._resolver

    @property
    def repository(self) -> ProspectingRepository:
        return self._repository

    @property
    def review(self) -> ReviewService:
        return self._review

    def evaluate_text(
        self,
        text: str,
        *,
        team_id: str,
        source_kind: SourceKind,
        source_ref: str,
        title: str | None = None,
        run_id: UUID | None = None,
        published_at: datetime | None = None,
    ) -> TextEvaluation:
        """Match, resolve and score one text.

        Raises ``MalformedInputError`` when the text is too short, carries no
        signal or names no resolvable company; callers count those as skipped.
        """
        body = text or ""
        if len(body.strip()) < self._min_text_length:
            raise MalformedInputError("Text is shorter than the minimum length.", code="INPUT_TOO_SHORT")
        match = self._matcher.match(f"{title}\n{body}" if title else body)
        if not match.has_signal:
            raise MalformedInputError("No keyword matched.", code="INPUT_NO_SIGNAL")
        domains = self._resolver.extract_from_source(source_ref, title, body)
        if not domains:
            raise MalformedInputError("No company domain could be resolved.", code="INPUT_NO_DOMAIN")

        confidence = self._scorer.score(match)
        trigger_text = self._matcher.trigger_context(body, match)
        discoveries = []
        for extracted in domains:
            assessment = assess_source(
                source_kind, domain_origin=extracted.origin, published_at=published_at
            )
            logger.debug(
                "discovery.assessed",
                extra={"company_domain": extracted.domain, "source_ref": source_ref, **assessment.as_dict()},
            )
            discoveries.append(
                Discovery(
                    team_id=team_id,
                    source_kind=source_kind,
                    source_ref=source_ref,
                    source_title=title,
                    company_domain=extracted.domain,
                    company_name=company_name_from_domain(extracted.domain),
                    trigger_text=trigger_text,
                    matched_keywords=list(match.matched_keywords),
                    tags=list(confidence.tags),
                    keyword_category=match.primary_category,
                    confidence_score=confidence.score,
                    run_id=run_id,
                )
            )
        return TextEvaluation(match=match, confidence=confidence, discoveries=tuple(discoveries))

    def ingest_text(
        self,
        text: str,
        *,
        team_id: str,
        source_kind: SourceKind,
        source_ref: str,
        title: str | None = None,
        run_id: UUID | None = None,
        published_at: datetime | None = None,
    ) -> list[TransitionResult]:
        evaluation = self.evaluate_text(
            text,
            team_id=team_id,
            source_kind=source_kind,
            source_ref=source_ref,
            title=title,
            run_id=run_id,
            published_at=published_at,
        )
        return [self._review.record_discovery(discovery) for discovery in evaluation.discoveries]


_engine: ScoringEngine | None = None


def get_scoring_engine() -> ScoringEngine:
    """Process-wide engine for the API; tests override it via dependency_overrides."""
    global _engine
    if _engine is None:
        _engine = ScoringEngine.from_settings()
    return _engine
