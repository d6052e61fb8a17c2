from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.discovery import Prospect
from app.services.scoring.priority import apply_priority, priority_score, rank

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _prospect(domain: str, fit: int, connection: float = 0.0, **overrides) -> Prospect:
    return apply_priority(
        Prospect(team_id="t1", company_domain=domain, fit_score=fit, connection_score=connection, **overrides)
    )


def test_priority_blends_fit_and_scaled_connection():
    assert priority_score(100, 0.49) == 69.4
    assert priority_score(55, 0.0) == 22.0
    assert priority_score(0, 1.0) == 60.0


def test_priority_is_deterministic():
    assert priority_score(76, 0.33) == priority_score(76, 0.33)


def test_custom_weights():
    assert priority_score(80, 0.5, fit_weight=0.5, connection_weight=0.5) == 65.0


@pytest.mark.parametrize("fit, connection", [(-1, 0.5), (101, 0.5), (50, -0.1), (50, 1.5)])
def test_out_of_range_inputs_are_rejected(fit, connection):
    with pytest.raises(ValueError):
        priority_score(fit, connection)


def test_apply_priority_sets_field():
    prospect = _prospect("acme.io", 100, 0.49)
    assert prospect.priority_score == 69.4


def test_rank_orders_by_priority_then_recency():
    older = _prospect("older.io", 60, created_at=NOW - timedelta(days=3))
    newer = _prospect("newer.io", 60, created_at=NOW - timedelta(days=1))
    reviewed = _prospect("reviewed.io", 60, created_at=NOW - timedelta(days=9), reviewed_at=NOW)
    top = _prospect("top.io", 90, created_at=NOW - timedelta(days=30))

    ranked = rank([older, newer, top, reviewed])

    assert [prospect.company_domain for prospect in ranked] == ["top.io", "reviewed.io", "newer.io", "older.io"]


def test_rank_falls_back_to_domain_for_exact_ties():
    a = _prospect("b.io", 50, created_at=NOW)
    b = _prospect("a.io", 50, created_at=NOW)
    assert [prospect.company_domain for prospect in rank([a, b])] == ["a.io", "b.io"]
