from __future__ import annotations

from uuid import uuid4

from app.models.discovery import ProspectStatus
from tests.helpers.api import override_engine


def _import(client, domain: str, fit_score: int = 0) -> dict:
    response = client.post(
        "/api/prospects", json={"team_id": "t1", "company_domain": domain, "fit_score": fit_score}
    )
    assert response.status_code == 201
    return response.json()["prospect"]


def test_import_is_idempotent(client, engine):
    with override_engine(engine):
        created = _import(client, "acme.io", fit_score=70)
        assert created["company_name"] == "Acme"
        assert created["priority_score"] == 28.0

        again = client.post("/api/prospects", json={"team_id": "t1", "company_domain": "ACME.io"})
        assert again.status_code == 200
        assert again.json()["outcome"] == "noop"
        assert again.json()["prospect"]["id"] == created["id"]


def test_list_is_ranked_and_filterable(client, engine):
    with override_engine(engine):
        _import(client, "low.io", fit_score=10)
        high = _import(client, "high.io", fit_score=90)
        client.post(f"/api/prospects/{high['id']}/feedback", json={"user_id": "u1", "is_good_fit": True})

        ranked = client.get("/api/prospects", params={"team_id": "t1"})
        assert [entry["company_domain"] for entry in ranked.json()] == ["high.io", "low.io"]

        qualified = client.get("/api/prospects", params={"team_id": "t1", "status": "qualified"})
        assert [entry["company_domain"] for entry in qualified.json()] == ["high.io"]

        unreviewed = client.get("/api/prospects", params={"team_id": "t1", "reviewed": "false"})
        assert [entry["company_domain"] for entry in unreviewed.json()] == ["low.io"]


def test_feedback_and_undo_round_trip(client, engine):
    with override_engine(engine):
        prospect = _import(client, "acme.io", fit_score=80)

        submitted = client.post(
            f"/api/prospects/{prospect['id']}/feedback",
            json={"user_id": "u1", "is_good_fit": False, "confidence": 5, "reason": "agency"},
        )
        assert submitted.status_code == 200
        body = submitted.json()
        assert body["prospect"]["status"] == "not_a_fit"
        assert body["feedback"]["ai_fit_score"] == 80
        assert body["feedback"]["previous_status"] == "new"

        stats = client.get("/api/prospects/feedback/stats", params={"team_id": "t1"}).json()
        assert stats["total"] == 1
        assert stats["not_fit"] == 1
        assert stats["ai_accuracy"] == 0.0

        undone = client.post(f"/api/prospects/{prospect['id']}/feedback/undo")
        assert undone.status_code == 200
        assert undone.json()["prospect"]["status"] == "new"
        assert undone.json()["prospect"]["reviewed_at"] is None

        fetched = client.get(f"/api/prospects/{prospect['id']}")
        assert fetched.json()["status"] == "new"

        nothing = client.post(f"/api/prospects/{prospect['id']}/feedback/undo")
        assert nothing.json()["outcome"] == "noop"


def test_feedback_validation(client, engine):
    with override_engine(engine):
        prospect = _import(client, "acme.io")
        response = client.post(
            f"/api/prospects/{prospect['id']}/feedback",
            json={"user_id": "u1", "is_good_fit": True, "confidence": 9},
        )
        assert response.status_code == 422


def test_feedback_on_archived_prospect_conflicts(client, engine):
    with override_engine(engine):
        prospect = _import(client, "acme.io")
    stored = engine.repository.find_prospect("t1", "acme.io")
    stored.status = ProspectStatus.ARCHIVED
    engine.repository.save_prospect(stored)

    with override_engine(engine):
        response = client.post(
            f"/api/prospects/{prospect['id']}/feedback", json={"user_id": "u1", "is_good_fit": True}
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "409_INVALID_TRANSITION"


def test_unknown_prospect_returns_404(client, engine):
    with override_engine(engine):
        assert client.get(f"/api/prospects/{uuid4()}").status_code == 404
        missing = client.post(f"/api/prospects/{uuid4()}/feedback", json={"user_id": "u1", "is_good_fit": True})
        assert missing.status_code == 404
        assert client.post(f"/api/prospects/{uuid4()}/feedback/undo").status_code == 404
