from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.config import settings
from app.services.scoring.engine import ScoringEngine, get_scoring_engine

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Liveness only; touches neither the repository nor the rule table."""
    return {"status": "healthy", "version": settings.app_version, "environment": settings.environment}


@router.get("/ready")
def readiness_check(engine: ScoringEngine = Depends(get_scoring_engine)):
    """Ready once rules are loaded and the repository answers."""
    if not engine.repository.healthy():
        logger.warning("health.repository_unavailable", extra={"backend": engine.repository.backend})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Repository is not available")

    return {
        "status": "ready",
        "repository": engine.repository.backend,
        "rules_version": engine.table.version,
        "rules_count": len(engine.table),
        "ruleset_sha256": engine.table.ruleset_sha256,
        "auto_promote_threshold": engine.scorer.auto_promote_threshold,
        "relationship_graph": "configured" if settings.relationship_graph_api_key else "not configured",
    }
