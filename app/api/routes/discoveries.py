"""API endpoints for listing and reviewing discoveries."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.errors import ensure_transition, to_http_error
from app.config import settings
from app.models.discovery import Discovery, DiscoveryStatus, SourceKind
from app.models.review import DiscoveryStats, TransitionResult
from app.services.scoring.engine import ScoringEngine, get_scoring_engine
from app.services.scoring.errors import ScoringEngineError
from app.services.scoring.repositories import DiscoveryOrder

router = APIRouter()
logger = logging.getLogger(__name__)


class ReviewActionRequest(BaseModel):
    reviewer: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=2000)


@router.get("/discoveries", response_model=list[Discovery])
def list_discoveries(
    team_id: str = Query(settings.default_team_id),
    status: list[DiscoveryStatus] | None = Query(None),
    source_kind: list[SourceKind] | None = Query(None),
    min_confidence: int | None = Query(None, ge=0, le=100),
    max_confidence: int | None = Query(None, ge=0, le=100),
    order_by: DiscoveryOrder = Query(DiscoveryOrder.CONFIDENCE),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> list[Discovery]:
    return engine.review.list_discoveries(
        team_id,
        statuses=status,
        source_kinds=source_kind,
        min_confidence=min_confidence,
        max_confidence=max_confidence,
        order_by=order_by,
        limit=limit,
        offset=offset,
    )


@router.get("/discoveries/stats", response_model=DiscoveryStats)
def discovery_stats(
    team_id: str = Query(settings.default_team_id),
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> DiscoveryStats:
    return engine.review.discovery_stats(team_id)


@router.get("/discoveries/{discovery_id}", response_model=Discovery)
def get_discovery(
    discovery_id: UUID,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> Discovery:
    try:
        return engine.review.get_discovery(discovery_id)
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="get_discovery") from exc


@router.post("/discoveries/{discovery_id}/review", response_model=TransitionResult)
def start_review(
    discovery_id: UUID,
    payload: ReviewActionRequest | None = None,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> TransitionResult:
    action = payload or ReviewActionRequest()
    try:
        result = engine.review.start_review(discovery_id, reviewer=action.reviewer)
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="start_review") from exc
    return ensure_transition(result, operation="start_review")


@router.post("/discoveries/{discovery_id}/promote", response_model=TransitionResult)
def promote_discovery(
    discovery_id: UUID,
    payload: ReviewActionRequest | None = None,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> TransitionResult:
    action = payload or ReviewActionRequest()
    try:
        result = engine.review.promote(discovery_id, reviewer=action.reviewer)
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="promote") from exc
    return ensure_transition(result, operation="promote")


@router.post("/discoveries/{discovery_id}/dismiss", response_model=TransitionResult)
def dismiss_discovery(
    discovery_id: UUID,
    payload: ReviewActionRequest | None = None,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> TransitionResult:
    action = payload or ReviewActionRequest()
    try:
        result = engine.review.dismiss(discovery_id, reviewer=action.reviewer, notes=action.notes)
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="dismiss") from exc
    return ensure_transition(result, operation="dismiss")
