from __future__ import annotations

import asyncio

import pytest

from app.clients.relationship_graph import ConnectionQueryResult
from app.models.relationship import ConnectionOrigin, ConnectionPath, ConnectionRecord
from app.services.scoring.path_finder import (
    PathLookup,
    build_paths,
    connection_score,
    describe_record,
    has_warm_intro,
    summarize_connections,
)


def _record(connector: str, person: str, strength: float, **overrides) -> ConnectionRecord:
    payload = {
        "connector_name": connector,
        "target_person_id": person,
        "target_name": f"Person {person}",
        "target_title": "CTO",
        "strength": strength,
    }
    payload.update(overrides)
    return ConnectionRecord(**payload)


def _path(strength: float, connector: str = "Ana") -> ConnectionPath:
    return ConnectionPath(
        target_person_id=f"p-{strength}-{connector}",
        target_name="Target",
        connector_name=connector,
        strength=strength,
        shared_context="Known connection",
    )


def test_two_connectors_give_two_sorted_paths_and_warm_intro():
    records = [
        _record(
            "Dana",
            "p-2",
            0.3,
            origin=ConnectionOrigin.EMAIL,
        ),
        _record(
            "Ana",
            "p-1",
            0.8,
            origin=ConnectionOrigin.WORK_HISTORY,
            organization="Globex",
            overlap_start="2019-01-01",
            overlap_end="2021-06-30",
        ),
    ]

    summary = summarize_connections("target.com", build_paths(records))

    assert [path.strength for path in summary.paths] == [0.8, 0.3]
    assert summary.paths[0].shared_context == "Worked together at Globex (2019-2021)"
    assert summary.paths[1].shared_context == "Direct email correspondence"
    assert summary.connection_score == 0.49
    assert summary.has_warm_intro is True
    assert summary.warm_intro_count == 1
    assert summary.best_connector == "Ana"


def test_same_pair_collapses_to_strongest_with_joined_context():
    records = [
        _record("Ana", "p-1", 0.4, origin=ConnectionOrigin.LINKEDIN),
        _record("Ana", "p-1", 0.9, origin=ConnectionOrigin.EDUCATION, organization="MIT"),
        _record("Ana", "p-1", 0.5, origin=ConnectionOrigin.LINKEDIN),
    ]

    paths = build_paths(records)

    assert len(paths) == 1
    assert paths[0].strength == 0.9
    assert paths[0].shared_context == "LinkedIn connection; Attended MIT together"
    assert paths[0].origins == [ConnectionOrigin.LINKEDIN, ConnectionOrigin.EDUCATION]


def test_same_target_through_different_connectors_is_two_paths():
    records = [_record("Ana", "p-1", 0.6), _record("Ben", "p-1", 0.6)]
    assert [path.connector_name for path in build_paths(records)] == ["Ana", "Ben"]


def test_breadth_is_capped_and_depth_averaged():
    paths = [_path(0.9)] + [_path(0.05, connector=f"c{i}") for i in range(9)]

    # average 0.135 * 70 = 9.45, breadth capped at 30
    assert connection_score(paths) == 0.39
    assert has_warm_intro(paths) is True


def test_no_paths_scores_zero():
    assert connection_score([]) == 0.0
    assert has_warm_intro([]) is False
    summary = summarize_connections("target.com", [])
    assert summary.best_connector is None
    assert summary.warm_intro_count == 0


def test_warm_intro_threshold_is_inclusive():
    assert has_warm_intro([_path(0.7)]) is True
    assert has_warm_intro([_path(0.69)]) is False


def test_describe_record_fallbacks():
    assert describe_record(_record("Ana", "p", 0.5, origin=ConnectionOrigin.CALENDAR)) == "Met in meetings"
    assert describe_record(_record("Ana", "p", 0.5)) == "Known connection"
    assert (
        describe_record(_record("Ana", "p", 0.5, origin=ConnectionOrigin.WORK_HISTORY, organization="Initech"))
        == "Worked together at Initech"
    )


class _StubGraph:
    def __init__(self, results: dict[str, ConnectionQueryResult]) -> None:
        self._results = results
        self.calls: list[tuple[str, int | None, list[str] | None]] = []

    async def query_connections(self, search_term, *, size=None, title_keywords=None):
        self.calls.append((search_term, size, list(title_keywords) if title_keywords else None))
        return self._results.get(search_term, ConnectionQueryResult(status="empty", search_term=search_term))


def test_lookup_falls_back_through_search_terms():
    graph = _StubGraph(
        {
            "Livenation": ConnectionQueryResult(
                status="found",
                search_term="Livenation",
                records=[_record("Ana", "p-1", 0.75)],
                total=1,
            )
        }
    )
    pauses: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        pauses.append(seconds)

    lookup = PathLookup(graph, query_size=25, pause_seconds=0.2, sleep=fake_sleep)
    result = asyncio.run(lookup.find("livenation.com", company_name="Livenation Inc", title_keywords=["CTO"]))

    assert [call[0] for call in graph.calls] == ["Live Nation", "Livenation"]
    assert graph.calls[0][1] == 25
    assert graph.calls[0][2] == ["CTO"]
    assert pauses == [0.2]
    assert result.search_term == "Livenation"
    assert result.has_warm_intro is True


def test_lookup_without_hits_returns_empty_connections():
    graph = _StubGraph({})
    result = asyncio.run(PathLookup(graph).find("acme.io", company_name="Acme"))

    assert result.company_domain == "acme.io"
    assert result.paths == []
    assert result.connection_score == 0.0
    assert len(graph.calls) == 1


def test_record_strength_above_one_is_rejected():
    with pytest.raises(ValueError):
        _record("Ana", "p", 1.2)
