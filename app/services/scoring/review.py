"""Review state machine for discoveries and prospects."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from uuid import UUID

from app.models.discovery import (
    Discovery,
    DiscoveryStatus,
    Prospect,
    ProspectSource,
    ProspectStatus,
    SourceKind,
)
from app.models.review import (
    DiscoveryStats,
    FeedbackStats,
    FeedbackSubmission,
    ReviewFeedback,
    TransitionOutcome,
    TransitionResult,
)
from app.models.signals import CapabilityTag
from app.observability.metrics import metrics
from app.services.scoring.entity_resolver import company_name_from_domain
from app.services.scoring.errors import NotFoundError
from app.services.scoring.priority import apply_priority, rank
from app.services.scoring.repositories import DiscoveryOrder, ProspectingRepository

logger = logging.getLogger(__name__)

OPEN_DISCOVERY_STATES = (DiscoveryStatus.NEW, DiscoveryStatus.REVIEWING)
LINKED_DISCOVERY_STATES = (DiscoveryStatus.PROMOTED, DiscoveryStatus.DUPLICATE)
AI_GOOD_FIT_THRESHOLD = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _apply_verdict(prospect: Prospect, feedback: ReviewFeedback, *, reviewed_at: datetime) -> None:
    prospect.status = ProspectStatus.QUALIFIED if feedback.is_good_fit else ProspectStatus.NOT_A_FIT
    prospect.reviewed_at = reviewed_at
    prospect.reviewed_by = feedback.user_id
    prospect.user_override = feedback.is_good_fit


class ReviewService:
    """Applies lifecycle transitions and returns the post-transition view.

    Transitions never raise for a disallowed move; they report ``noop`` or
    ``invalid_state`` instead. Only a missing record raises ``NotFoundError``.
    """

    def __init__(
        self,
        repository: ProspectingRepository,
        *,
        auto_promote: Callable[[int], bool] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._auto_promote = auto_promote
        self._clock = clock

    @property
    def repository(self) -> ProspectingRepository:
        return self._repository

    # discoveries

    def record_discovery(self, discovery: Discovery) -> TransitionResult:
        """Store a new sighting, or report the existing row as a duplicate."""
        stored, created = self._repository.insert_discovery(discovery)
        if not created:
            if discovery.confidence_score > stored.confidence_score:
                stored.confidence_score = discovery.confidence_score
                stored.matched_keywords = list(discovery.matched_keywords)
                stored.tags = list(discovery.tags)
                stored.trigger_text = discovery.trigger_text
                stored.keyword_category = discovery.keyword_category
                stored = self._repository.save_discovery(stored)
            logger.info(
                "discovery.duplicate",
                extra={
                    "discovery_id": str(stored.id),
                    "company_domain": stored.company_domain,
                    "source_ref": stored.source_ref,
                },
            )
            metrics.increment("discovery.duplicate", tags={"source_kind": discovery.source_kind.value})
            return TransitionResult(outcome=TransitionOutcome.DUPLICATE, discovery=stored)

        logger.info(
            "discovery.created",
            extra={
                "discovery_id": str(stored.id),
                "company_domain": stored.company_domain,
                "confidence_score": stored.confidence_score,
            },
        )
        metrics.increment("discovery.created", tags={"source_kind": stored.source_kind.value})
        if self._auto_promote is not None and self._auto_promote(stored.confidence_score):
            return self._promote(stored, reviewer=None, automatic=True)
        return TransitionResult(outcome=TransitionOutcome.APPLIED, discovery=stored)

    def start_review(self, discovery_id: UUID, *, reviewer: str | None = None) -> TransitionResult:
        discovery = self._require_discovery(discovery_id)
        if discovery.status == DiscoveryStatus.REVIEWING:
            return TransitionResult(outcome=TransitionOutcome.NOOP, discovery=discovery)
        if discovery.status != DiscoveryStatus.NEW:
            return self._invalid(discovery, "review")
        discovery.status = DiscoveryStatus.REVIEWING
        discovery.reviewed_by = reviewer
        discovery = self._repository.save_discovery(discovery)
        return TransitionResult(outcome=TransitionOutcome.APPLIED, discovery=discovery)

    def promote(self, discovery_id: UUID, *, reviewer: str | None = None) -> TransitionResult:
        discovery = self._require_discovery(discovery_id)
        return self._promote(discovery, reviewer=reviewer, automatic=False)

    def dismiss(
        self, discovery_id: UUID, *, reviewer: str | None = None, notes: str | None = None
    ) -> TransitionResult:
        discovery = self._require_discovery(discovery_id)
        if discovery.status == DiscoveryStatus.DISMISSED:
            return TransitionResult(outcome=TransitionOutcome.NOOP, discovery=discovery)
        if discovery.status not in OPEN_DISCOVERY_STATES:
            return self._invalid(discovery, "dismiss")
        discovery.status = DiscoveryStatus.DISMISSED
        discovery.reviewed_at = self._clock()
        discovery.reviewed_by = reviewer
        if notes:
            discovery.notes = notes
        discovery = self._repository.save_discovery(discovery)
        logger.info("discovery.dismissed", extra={"discovery_id": str(discovery.id), "reviewer": reviewer})
        metrics.increment("discovery.dismissed")
        return TransitionResult(outcome=TransitionOutcome.APPLIED, discovery=discovery)

    def _promote(self, discovery: Discovery, *, reviewer: str | None, automatic: bool) -> TransitionResult:
        if discovery.status in LINKED_DISCOVERY_STATES and discovery.prospect_id is not None:
            prospect = self._repository.get_prospect(discovery.prospect_id)
            return TransitionResult(
                outcome=TransitionOutcome.NOOP, discovery=discovery, prospect=prospect, detail="already promoted"
            )
        if discovery.status not in OPEN_DISCOVERY_STATES:
            return self._invalid(discovery, "promote")

        now = self._clock()
        prospect = self._repository.find_prospect(discovery.team_id, discovery.company_domain)
        created = False
        if prospect is None:
            candidate = apply_priority(
                Prospect(
                    team_id=discovery.team_id,
                    company_domain=discovery.company_domain,
                    company_name=discovery.company_name or company_name_from_domain(discovery.company_domain),
                    fit_score=discovery.confidence_score,
                    fit_tags=list(discovery.tags),
                    source=ProspectSource.DISCOVERY,
                    discovery_id=discovery.id,
                    created_at=now,
                )
            )
            # The unique (team_id, company_domain) key settles concurrent promotions.
            prospect, created = self._repository.insert_prospect(candidate)

        discovery.prospect_id = prospect.id
        discovery.status = (
            DiscoveryStatus.DUPLICATE if automatic and not created else DiscoveryStatus.PROMOTED
        )
        discovery.reviewed_at = now
        discovery.reviewed_by = reviewer
        discovery = self._repository.save_discovery(discovery)

        event = "prospect.promoted" if created else "prospect.linked"
        logger.info(
            event,
            extra={
                "discovery_id": str(discovery.id),
                "prospect_id": str(prospect.id),
                "company_domain": prospect.company_domain,
                "automatic": automatic,
            },
        )
        metrics.increment(event, tags={"automatic": str(automatic).lower()})
        return TransitionResult(
            outcome=TransitionOutcome.APPLIED,
            discovery=discovery,
            prospect=prospect,
            auto_promoted=automatic and created,
        )

    # prospects

    def import_prospect(
        self,
        team_id: str,
        company_domain: str,
        *,
        company_name: str | None = None,
        fit_score: int = 0,
        fit_tags: Sequence[CapabilityTag] = (),
        source: ProspectSource = ProspectSource.IMPORT,
    ) -> TransitionResult:
        """Create a prospect directly; an existing one for the domain is a no-op."""
        candidate = apply_priority(
            Prospect(
                team_id=team_id,
                company_domain=company_domain,
                company_name=company_name or company_name_from_domain(company_domain.strip().lower()),
                fit_score=fit_score,
                fit_tags=list(fit_tags),
                source=source,
                created_at=self._clock(),
            )
        )
        prospect, created = self._repository.insert_prospect(candidate)
        if not created:
            return TransitionResult(outcome=TransitionOutcome.NOOP, prospect=prospect, detail="prospect exists")
        logger.info("prospect.imported", extra={"prospect_id": str(prospect.id), "company_domain": prospect.company_domain})
        return TransitionResult(outcome=TransitionOutcome.APPLIED, prospect=prospect)

    def submit_feedback(
        self, prospect_id: UUID, user_id: str, submission: FeedbackSubmission
    ) -> TransitionResult:
        prospect = self._require_prospect(prospect_id)
        if prospect.status == ProspectStatus.ARCHIVED:
            return TransitionResult(
                outcome=TransitionOutcome.INVALID_STATE,
                prospect=prospect,
                detail="cannot review an archived prospect",
            )
        now = self._clock()
        prior = self._repository.get_feedback(prospect_id, user_id)
        # A resubmission by the same reviewer keeps that reviewer's rollback point.
        previous_status = prior.previous_status if prior is not None else prospect.status
        feedback = self._repository.upsert_feedback(
            ReviewFeedback(
                prospect_id=prospect.id,
                user_id=user_id,
                is_good_fit=submission.is_good_fit,
                confidence=submission.confidence,
                reason=submission.reason,
                user_rating=submission.user_rating,
                review_time_ms=submission.review_time_ms,
                ai_fit_score=prospect.fit_score,
                ai_tags=list(prospect.fit_tags),
                previous_status=previous_status,
                created_at=now,
                updated_at=now,
            )
        )
        _apply_verdict(prospect, feedback, reviewed_at=now)
        prospect = self._repository.save_review_state(prospect)
        logger.info(
            "feedback.submitted",
            extra={
                "prospect_id": str(prospect.id),
                "user_id": user_id,
                "is_good_fit": submission.is_good_fit,
                "previous_status": previous_status.value,
            },
        )
        metrics.increment("feedback.submitted", tags={"good_fit": str(submission.is_good_fit).lower()})
        return TransitionResult(outcome=TransitionOutcome.APPLIED, prospect=prospect, feedback=feedback)

    def undo_feedback(self, prospect_id: UUID) -> TransitionResult:
        """Revert the most recent feedback; nothing to undo is a no-op.

        When other reviewers' feedback remains, the prospect takes the verdict
        of the newest remaining row; otherwise it returns to the status it had
        before the undone feedback.
        """
        prospect = self._require_prospect(prospect_id)
        feedback = self._repository.latest_feedback(prospect_id)
        if feedback is None:
            return TransitionResult(outcome=TransitionOutcome.NOOP, prospect=prospect, detail="no feedback to undo")
        self._repository.delete_feedback(feedback.id)
        remaining = self._repository.latest_feedback(prospect_id)
        if remaining is not None:
            _apply_verdict(prospect, remaining, reviewed_at=remaining.updated_at)
        else:
            prospect.status = feedback.previous_status
            prospect.reviewed_at = None
            prospect.reviewed_by = None
            prospect.user_override = None
        prospect = self._repository.save_review_state(prospect)
        logger.info(
            "feedback.undone",
            extra={"prospect_id": str(prospect.id), "restored_status": prospect.status.value},
        )
        metrics.increment("feedback.undone")
        return TransitionResult(outcome=TransitionOutcome.APPLIED, prospect=prospect, feedback=feedback)

    # queries

    def get_discovery(self, discovery_id: UUID) -> Discovery:
        return self._require_discovery(discovery_id)

    def list_discoveries(
        self,
        team_id: str,
        *,
        statuses: Sequence[DiscoveryStatus] | None = None,
        source_kinds: Sequence[SourceKind] | None = None,
        min_confidence: int | None = None,
        max_confidence: int | None = None,
        order_by: DiscoveryOrder = DiscoveryOrder.CONFIDENCE,
        limit: int | None = 50,
        offset: int = 0,
    ) -> list[Discovery]:
        return self._repository.list_discoveries(
            team_id,
            statuses=statuses,
            source_kinds=source_kinds,
            min_confidence=min_confidence,
            max_confidence=max_confidence,
            order_by=order_by,
            limit=limit,
            offset=offset,
        )

    def list_prospects(
        self,
        team_id: str,
        *,
        statuses: Sequence[ProspectStatus] | None = None,
        reviewed: bool | None = None,
        limit: int | None = 50,
        offset: int = 0,
    ) -> list[Prospect]:
        """Prospects ordered by priority, highest first."""
        ranked = rank(self._repository.list_prospects(team_id, statuses=statuses, reviewed=reviewed))
        start = max(0, offset)
        return ranked[start:] if limit is None else ranked[start : start + max(0, limit)]

    def feedback_stats(self, team_id: str) -> FeedbackStats:
        feedback = self._repository.list_feedback(team_id)
        prospects = self._repository.list_prospects(team_id)
        reviewed = sum(1 for prospect in prospects if prospect.reviewed_at is not None)
        good_fit = sum(1 for entry in feedback if entry.is_good_fit)
        scored = [entry for entry in feedback if entry.ai_fit_score is not None]
        accuracy = None
        if scored:
            agreed = sum(
                1 for entry in scored if (entry.ai_fit_score >= AI_GOOD_FIT_THRESHOLD) == entry.is_good_fit
            )
            accuracy = round(agreed / len(scored), 4)
        return FeedbackStats(
            total=len(feedback),
            good_fit=good_fit,
            not_fit=len(feedback) - good_fit,
            ai_accuracy=accuracy,
            reviewed_count=reviewed,
            unreviewed_count=len(prospects) - reviewed,
        )

    def discovery_stats(self, team_id: str) -> DiscoveryStats:
        discoveries = self._repository.list_discoveries(team_id, limit=None)
        if not discoveries:
            return DiscoveryStats()
        now = self._clock()
        ages = [now - _aware(discovery.discovered_at) for discovery in discoveries]
        return DiscoveryStats(
            total=len(discoveries),
            by_status=dict(Counter(discovery.status.value for discovery in discoveries)),
            by_source=dict(Counter(discovery.source_kind.value for discovery in discoveries)),
            by_keyword_category=dict(
                Counter(
                    discovery.keyword_category.value
                    for discovery in discoveries
                    if discovery.keyword_category is not None
                )
            ),
            avg_confidence=round(
                sum(discovery.confidence_score for discovery in discoveries) / len(discoveries), 2
            ),
            last_24h=sum(1 for age in ages if age <= timedelta(hours=24)),
            last_7d=sum(1 for age in ages if age <= timedelta(days=7)),
        )

    # helpers

    def _require_discovery(self, discovery_id: UUID) -> Discovery:
        discovery = self._repository.get_discovery(discovery_id)
        if discovery is None:
            raise NotFoundError(f"Discovery {discovery_id} not found.")
        return discovery

    def _require_prospect(self, prospect_id: UUID) -> Prospect:
        prospect = self._repository.get_prospect(prospect_id)
        if prospect is None:
            raise NotFoundError(f"Prospect {prospect_id} not found.")
        return prospect

    @staticmethod
    def _invalid(discovery: Discovery, action: str) -> TransitionResult:
        return TransitionResult(
            outcome=TransitionOutcome.INVALID_STATE,
            discovery=discovery,
            detail=f"cannot {action} a {discovery.status.value} discovery",
        )
