from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.models.discovery import Discovery, DiscoveryStatus, Prospect, ProspectStatus, SourceKind
from app.models.review import ReviewFeedback
from app.models.run import ListenerRun, RunStatus
from app.models.signals import CapabilityTag, KeywordCategory
from app.services.scoring.errors import PersistenceError
from app.services.scoring.repositories import (
    DatabaseProspectingRepository,
    DiscoveryOrder,
    InMemoryProspectingRepository,
    build_repository,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path: Path):
    if request.param == "memory":
        yield InMemoryProspectingRepository()
        return
    database = DatabaseProspectingRepository(f"sqlite:///{tmp_path / 'warm_signal.sqlite'}", auto_create_schema=True)
    try:
        yield database
    finally:
        database.dispose()


def _discovery(domain: str = "acme.io", source_ref: str = "https://news.test/a", **overrides) -> Discovery:
    payload = {
        "team_id": "t1",
        "source_kind": SourceKind.NEWS_ARTICLE,
        "source_ref": source_ref,
        "company_domain": domain,
        "confidence_score": 60,
        "matched_keywords": ["bot attack"],
        "tags": [CapabilityTag.CAPTCHA_REPLACEMENT],
        "keyword_category": KeywordCategory.SIGNAL,
        "discovered_at": NOW,
    }
    payload.update(overrides)
    return Discovery(**payload)


def _prospect(domain: str = "acme.io", team_id: str = "t1", **overrides) -> Prospect:
    return Prospect(team_id=team_id, company_domain=domain, fit_score=60, created_at=NOW, **overrides)


def test_discovery_insert_is_unique_per_domain_and_source(repo):
    first, created = repo.insert_discovery(_discovery())
    second, created_again = repo.insert_discovery(_discovery())

    assert created is True
    assert created_again is False
    assert second.id == first.id
    assert repo.find_discovery("ACME.io", "https://news.test/a").id == first.id
    assert repo.find_discovery("acme.io", "https://news.test/other") is None


def test_discovery_round_trip_preserves_fields(repo):
    stored, _ = repo.insert_discovery(_discovery(trigger_text="...bot attack..."))
    loaded = repo.get_discovery(stored.id)

    assert loaded.tags == [CapabilityTag.CAPTCHA_REPLACEMENT]
    assert loaded.keyword_category == KeywordCategory.SIGNAL
    assert loaded.matched_keywords == ["bot attack"]
    assert loaded.discovered_at == NOW
    assert loaded.status == DiscoveryStatus.NEW


def test_save_discovery_updates_mutable_fields(repo):
    stored, _ = repo.insert_discovery(_discovery())
    stored.status = DiscoveryStatus.DISMISSED
    stored.notes = "not relevant"
    stored.reviewed_at = NOW
    repo.save_discovery(stored)

    loaded = repo.get_discovery(stored.id)
    assert loaded.status == DiscoveryStatus.DISMISSED
    assert loaded.notes == "not relevant"
    assert loaded.reviewed_at == NOW


def test_save_unknown_discovery_raises(repo):
    with pytest.raises(PersistenceError) as excinfo:
        repo.save_discovery(_discovery())
    assert excinfo.value.code == "404_NOT_FOUND"


def test_list_discoveries_filters_and_orders(repo):
    repo.insert_discovery(_discovery("low.io", confidence_score=30, discovered_at=NOW))
    repo.insert_discovery(_discovery("high.io", confidence_score=90, discovered_at=NOW - timedelta(days=2)))
    repo.insert_discovery(
        _discovery("mid.io", confidence_score=60, discovered_at=NOW - timedelta(days=1), source_kind=SourceKind.HN_POST)
    )
    repo.insert_discovery(_discovery("other-team.io", team_id="t2", confidence_score=99))

    by_confidence = repo.list_discoveries("t1")
    assert [entry.company_domain for entry in by_confidence] == ["high.io", "mid.io", "low.io"]

    recent = repo.list_discoveries("t1", order_by=DiscoveryOrder.RECENT)
    assert [entry.company_domain for entry in recent] == ["low.io", "mid.io", "high.io"]

    ranged = repo.list_discoveries("t1", min_confidence=50, max_confidence=90)
    assert {entry.company_domain for entry in ranged} == {"high.io", "mid.io"}

    hn_only = repo.list_discoveries("t1", source_kinds=[SourceKind.HN_POST])
    assert [entry.company_domain for entry in hn_only] == ["mid.io"]

    page = repo.list_discoveries("t1", limit=1, offset=1)
    assert [entry.company_domain for entry in page] == ["mid.io"]


def test_prospect_unique_per_team_and_domain(repo):
    first, created = repo.insert_prospect(_prospect())
    again, created_again = repo.insert_prospect(_prospect())
    other_team, created_other = repo.insert_prospect(_prospect(team_id="t2"))

    assert (created, created_again, created_other) == (True, False, True)
    assert again.id == first.id
    assert other_team.id != first.id


def test_list_prospects_by_status_and_review(repo):
    repo.insert_prospect(_prospect("new.io"))
    qualified, _ = repo.insert_prospect(_prospect("qualified.io"))
    qualified.status = ProspectStatus.QUALIFIED
    qualified.reviewed_at = NOW
    repo.save_prospect(qualified)

    assert [entry.company_domain for entry in repo.list_prospects("t1", statuses=[ProspectStatus.QUALIFIED])] == [
        "qualified.io"
    ]
    assert [entry.company_domain for entry in repo.list_prospects("t1", reviewed=False)] == ["new.io"]
    assert len(repo.list_prospects("t1")) == 2


def test_feedback_upsert_keeps_one_row_per_user(repo):
    prospect, _ = repo.insert_prospect(_prospect())
    first = repo.upsert_feedback(
        ReviewFeedback(prospect_id=prospect.id, user_id="u1", is_good_fit=True, created_at=NOW, updated_at=NOW)
    )
    second = repo.upsert_feedback(
        ReviewFeedback(
            prospect_id=prospect.id,
            user_id="u1",
            is_good_fit=False,
            reason="too small",
            created_at=NOW + timedelta(minutes=5),
            updated_at=NOW + timedelta(minutes=5),
        )
    )

    assert second.id == first.id
    stored = repo.list_feedback("t1")
    assert len(stored) == 1
    assert stored[0].is_good_fit is False
    assert stored[0].reason == "too small"
    assert repo.latest_feedback(prospect.id).id == first.id


def test_delete_feedback(repo):
    prospect, _ = repo.insert_prospect(_prospect())
    feedback = repo.upsert_feedback(ReviewFeedback(prospect_id=prospect.id, user_id="u1", is_good_fit=True))

    repo.delete_feedback(feedback.id)

    assert repo.latest_feedback(prospect.id) is None
    assert repo.list_feedback("t1") == []


def test_list_feedback_is_scoped_to_team(repo):
    mine, _ = repo.insert_prospect(_prospect("mine.io"))
    theirs, _ = repo.insert_prospect(_prospect("theirs.io", team_id="t2"))
    repo.upsert_feedback(ReviewFeedback(prospect_id=mine.id, user_id="u1", is_good_fit=True))
    repo.upsert_feedback(ReviewFeedback(prospect_id=theirs.id, user_id="u1", is_good_fit=True))

    assert [entry.prospect_id for entry in repo.list_feedback("t1")] == [mine.id]


def test_runs_are_saved_and_listed(repo):
    older = ListenerRun(
        team_id="t1", source_kind=SourceKind.MANUAL, source_name="fixture", started_at=NOW - timedelta(hours=1)
    )
    newer = ListenerRun(team_id="t1", source_kind=SourceKind.MANUAL, source_name="fixture", started_at=NOW)
    repo.save_run(older)
    repo.save_run(newer)

    newer.items_scanned = 4
    newer.record_error(code="INPUT_NO_DOMAIN", message="no domain", ref="https://x.test")
    newer.finalize()
    repo.save_run(newer)

    loaded = repo.get_run(newer.id)
    assert loaded.status == RunStatus.PARTIAL
    assert loaded.items_scanned == 4
    assert loaded.error_details[0].code == "INPUT_NO_DOMAIN"
    assert [run.id for run in repo.list_runs("t1")] == [newer.id, older.id]
    assert repo.list_runs("t1", limit=1)[0].id == newer.id


def test_repository_reports_healthy(repo):
    assert repo.healthy() is True


def test_build_repository_without_url_is_in_memory(monkeypatch):
    monkeypatch.setattr("app.services.scoring.repositories.settings.database_url", None)
    assert isinstance(build_repository(), InMemoryProspectingRepository)


def test_save_connections_leaves_review_fields_alone(repo):
    prospect, _ = repo.insert_prospect(_prospect())
    reviewed = prospect.model_copy(
        update={"status": ProspectStatus.QUALIFIED, "reviewed_at": NOW, "reviewed_by": "u1", "user_override": True}
    )
    repo.save_review_state(reviewed)

    stale = prospect.model_copy(
        update={"connection_score": 0.49, "has_warm_intro": True, "warm_intro_count": 1, "best_connector": "Ana"}
    )
    stored = repo.save_connections(stale)

    assert stored.status == ProspectStatus.QUALIFIED
    assert stored.reviewed_by == "u1"
    assert stored.user_override is True
    assert stored.connection_score == 0.49
    assert stored.best_connector == "Ana"
    # 60 * 0.4 + 49 * 0.6
    assert stored.priority_score == 53.4
    assert repo.get_prospect(prospect.id).status == ProspectStatus.QUALIFIED


def test_save_review_state_leaves_connection_fields_alone(repo):
    prospect, _ = repo.insert_prospect(_prospect())
    repo.save_connections(prospect.model_copy(update={"connection_score": 0.8, "has_warm_intro": True}))

    repo.save_review_state(prospect.model_copy(update={"status": ProspectStatus.NOT_A_FIT, "reviewed_by": "u2"}))

    stored = repo.get_prospect(prospect.id)
    assert stored.status == ProspectStatus.NOT_A_FIT
    assert stored.connection_score == 0.8
    assert stored.has_warm_intro is True


def test_scoped_saves_require_an_existing_prospect(repo):
    with pytest.raises(PersistenceError):
        repo.save_connections(_prospect("ghost.io"))
    with pytest.raises(PersistenceError):
        repo.save_review_state(_prospect("ghost.io"))


def test_get_feedback_is_per_reviewer(repo):
    prospect, _ = repo.insert_prospect(_prospect())
    repo.upsert_feedback(ReviewFeedback(prospect_id=prospect.id, user_id="u1", is_good_fit=True))

    assert repo.get_feedback(prospect.id, "u1").is_good_fit is True
    assert repo.get_feedback(prospect.id, "u2") is None
