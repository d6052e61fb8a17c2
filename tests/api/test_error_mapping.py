from __future__ import annotations

import pytest
from fastapi import HTTPException

from app.api.errors import ensure_transition, map_error_code, to_http_error
from app.models.review import TransitionOutcome, TransitionResult
from app.services.scoring.errors import MalformedInputError, NotFoundError, PersistenceError
from tests.helpers.api import override_engine


@pytest.mark.parametrize(
    "code, status_code",
    [
        ("404_NOT_FOUND", 404),
        ("409_CONFLICT", 409),
        ("409_INVALID_TRANSITION", 409),
        ("INPUT_NO_DOMAIN", 422),
        ("GRAPH_429", 429),
        ("GRAPH_TIMEOUT", 504),
        ("GRAPH_5XX", 502),
        ("RULES_SCHEMA_INVALID", 503),
        ("CONFIG_MISSING_KEY", 503),
        ("500_INTERNAL", 500),
    ],
)
def test_map_error_code(code, status_code):
    assert map_error_code(code) == status_code


def test_to_http_error_carries_code_and_message():
    error = to_http_error(MalformedInputError("no signal", code="INPUT_NO_SIGNAL"), operation="ingest")
    assert error.status_code == 422
    assert error.detail == {"code": "INPUT_NO_SIGNAL", "error": "no signal"}
    assert to_http_error(NotFoundError("gone"), operation="get").status_code == 404


def test_ensure_transition_passes_through_and_rejects_invalid_state():
    noop = TransitionResult(outcome=TransitionOutcome.NOOP)
    assert ensure_transition(noop, operation="promote") is noop

    with pytest.raises(HTTPException) as excinfo:
        ensure_transition(
            TransitionResult(outcome=TransitionOutcome.INVALID_STATE, detail="cannot promote a dismissed discovery"),
            operation="promote",
        )
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["error"] == "cannot promote a dismissed discovery"


def test_untranslated_engine_errors_use_mapped_status(client, engine, monkeypatch):
    def _fail(team_id):
        raise PersistenceError("database went away", code="500_INTERNAL")

    monkeypatch.setattr(engine.review, "discovery_stats", _fail)

    with override_engine(engine):
        response = client.get("/api/discoveries/stats", params={"team_id": "t1"})

    assert response.status_code == 500
    assert response.json()["detail"] == {"code": "500_INTERNAL", "error": "database went away"}
