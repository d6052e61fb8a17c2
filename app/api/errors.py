"""Error-code to HTTP status mapping shared by the API routes."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from app.models.review import TransitionOutcome, TransitionResult
from app.services.scoring.errors import InvalidTransitionError, ScoringEngineError

logger = logging.getLogger(__name__)


def map_error_code(code: str) -> int:
    if code == "404_NOT_FOUND":
        return status.HTTP_404_NOT_FOUND
    if code in {"409_INVALID_TRANSITION", "409_CONFLICT"}:
        return status.HTTP_409_CONFLICT
    if code.startswith("INPUT_"):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if code == "GRAPH_429":
        return status.HTTP_429_TOO_MANY_REQUESTS
    if code == "GRAPH_TIMEOUT":
        return status.HTTP_504_GATEWAY_TIMEOUT
    if code.startswith("GRAPH_"):
        return status.HTTP_502_BAD_GATEWAY
    if code.startswith(("CONFIG_", "RULES_")):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_error(exc: ScoringEngineError, *, operation: str) -> HTTPException:
    logger.error("api.scoring_error", extra={"operation": operation, "code": exc.code})
    return HTTPException(status_code=map_error_code(exc.code), detail={"code": exc.code, "error": str(exc)})


def ensure_transition(result: TransitionResult, *, operation: str) -> TransitionResult:
    """Surface an ``invalid_state`` outcome as a 409; other outcomes pass through."""
    if result.outcome == TransitionOutcome.INVALID_STATE:
        raise to_http_error(InvalidTransitionError(result.detail or f"{operation} not allowed"), operation=operation)
    return result
