"""API endpoints for prospects, review feedback and undo."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, conint

from app.api.errors import ensure_transition, to_http_error
from app.config import settings
from app.models.discovery import Prospect, ProspectStatus
from app.models.review import FeedbackStats, FeedbackSubmission, TransitionOutcome, TransitionResult
from app.models.signals import CapabilityTag
from app.services.scoring.engine import ScoringEngine, get_scoring_engine
from app.services.scoring.errors import ScoringEngineError

router = APIRouter()
logger = logging.getLogger(__name__)


class ProspectImportRequest(BaseModel):
    team_id: str | None = None
    company_domain: str = Field(..., min_length=3)
    company_name: str | None = None
    fit_score: conint(ge=0, le=100) = 0  # type: ignore[valid-type]
    fit_tags: list[CapabilityTag] = Field(default_factory=list)


class FeedbackRequest(FeedbackSubmission):
    user_id: str = Field(..., min_length=1)


@router.get("/prospects", response_model=list[Prospect])
def list_prospects(
    team_id: str = Query(settings.default_team_id),
    status_filter: list[ProspectStatus] | None = Query(None, alias="status"),
    reviewed: bool | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> list[Prospect]:
    """Prospects ranked by priority score."""
    return engine.review.list_prospects(
        team_id, statuses=status_filter, reviewed=reviewed, limit=limit, offset=offset
    )


@router.post("/prospects", response_model=TransitionResult, status_code=status.HTTP_201_CREATED)
def import_prospect(
    payload: ProspectImportRequest,
    response: Response,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> TransitionResult:
    """Create a prospect directly; re-importing a known domain returns it unchanged."""
    try:
        result = engine.review.import_prospect(
            payload.team_id or settings.default_team_id,
            payload.company_domain,
            company_name=payload.company_name,
            fit_score=payload.fit_score,
            fit_tags=payload.fit_tags,
        )
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="import_prospect") from exc
    if result.outcome == TransitionOutcome.NOOP:
        response.status_code = status.HTTP_200_OK
    return result


@router.get("/prospects/feedback/stats", response_model=FeedbackStats)
def feedback_stats(
    team_id: str = Query(settings.default_team_id),
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> FeedbackStats:
    return engine.review.feedback_stats(team_id)


@router.get("/prospects/{prospect_id}", response_model=Prospect)
def get_prospect(
    prospect_id: UUID,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> Prospect:
    prospect = engine.repository.get_prospect(prospect_id)
    if prospect is None:
        raise HTTPException(status_code=404, detail="Prospect not found.")
    return prospect


@router.post("/prospects/{prospect_id}/feedback", response_model=TransitionResult)
def submit_feedback(
    prospect_id: UUID,
    payload: FeedbackRequest,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> TransitionResult:
    submission = FeedbackSubmission(**payload.model_dump(exclude={"user_id"}))
    try:
        result = engine.review.submit_feedback(prospect_id, payload.user_id, submission)
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="submit_feedback") from exc
    return ensure_transition(result, operation="submit_feedback")


@router.post("/prospects/{prospect_id}/feedback/undo", response_model=TransitionResult)
def undo_feedback(
    prospect_id: UUID,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> TransitionResult:
    try:
        return engine.review.undo_feedback(prospect_id)
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="undo_feedback") from exc
