"""Priority fusion of keyword fit and relationship strength."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from app.config import settings
from app.models.discovery import Prospect

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def priority_score(
    fit_score: float,
    connection_score: float,
    *,
    fit_weight: float | None = None,
    connection_weight: float | None = None,
) -> float:
    """Weighted blend on a 0-100 scale.

    ``fit_score`` is already 0-100; ``connection_score`` is stored 0-1 and is
    scaled by 100 here before weighting.
    """
    if not 0 <= fit_score <= 100:
        raise ValueError("fit_score must be within [0, 100]")
    if not 0 <= connection_score <= 1:
        raise ValueError("connection_score must be within [0, 1]")
    fit_w = settings.priority_fit_weight if fit_weight is None else fit_weight
    connection_w = settings.priority_connection_weight if connection_weight is None else connection_weight
    return round(fit_score * fit_w + connection_score * 100 * connection_w, 2)


def apply_priority(prospect: Prospect) -> Prospect:
    prospect.priority_score = priority_score(prospect.fit_score, prospect.connection_score)
    return prospect


def _recency(prospect: Prospect) -> datetime:
    value = prospect.reviewed_at or prospect.created_at or _EPOCH
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def rank(prospects: Iterable[Prospect]) -> list[Prospect]:
    """Highest priority first; ties go to the most recently reviewed or created."""
    return sorted(
        prospects,
        key=lambda prospect: (
            -prospect.priority_score,
            -_recency(prospect).timestamp(),
            prospect.company_domain,
        ),
    )
