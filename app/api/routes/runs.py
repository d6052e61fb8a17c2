"""API endpoints for triggering and inspecting listener runs."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.api.errors import to_http_error
from app.config import settings
from app.models.discovery import SourceKind
from app.models.run import ListenerRun, RunSummary, RunType
from app.services.scoring.engine import ScoringEngine, get_scoring_engine
from app.services.scoring.errors import ScoringEngineError
from pipelines.listener_scan import run_scan
from pipelines.signal_sources import CandidateText, StaticSignalSource

router = APIRouter()
logger = logging.getLogger(__name__)


class CandidateTextIn(BaseModel):
    source_ref: str = Field(..., min_length=1)
    raw_text: str
    title: str | None = None
    published_at: datetime | None = None


class RunRequest(BaseModel):
    """Texts to scan in one run, already fetched by the caller."""

    source_name: str = Field(default="api", min_length=1)
    source_kind: SourceKind = SourceKind.MANUAL
    team_id: str | None = None
    run_type: RunType = RunType.MANUAL
    items: list[CandidateTextIn] = Field(..., min_length=1, max_length=500)


@router.post("/runs", response_model=RunSummary, status_code=status.HTTP_201_CREATED)
def trigger_run(
    payload: RunRequest,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> RunSummary:
    """Scan the submitted texts and return the run summary."""
    source = StaticSignalSource(
        [CandidateText(**item.model_dump()) for item in payload.items],
        name=payload.source_name,
        source_kind=payload.source_kind,
    )
    try:
        return run_scan(
            source,
            engine,
            team_id=payload.team_id or settings.default_team_id,
            run_type=payload.run_type,
        )
    except ScoringEngineError as exc:
        raise to_http_error(exc, operation="trigger_run") from exc


@router.get("/runs", response_model=list[ListenerRun])
def list_runs(
    team_id: str = Query(settings.default_team_id),
    limit: int = Query(20, ge=1, le=100),
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> list[ListenerRun]:
    return engine.repository.list_runs(team_id, limit=limit)


@router.get("/runs/{run_id}", response_model=ListenerRun)
def get_run(
    run_id: UUID,
    engine: ScoringEngine = Depends(get_scoring_engine),
) -> ListenerRun:
    run = engine.repository.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found.")
    return run
