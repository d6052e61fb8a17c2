"""Review feedback and state-transition result models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, conint

from app.models.discovery import Discovery, Prospect, ProspectStatus
from app.models.signals import CapabilityTag


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedbackSubmission(BaseModel):
    """Payload a reviewer sends for a prospect."""

    is_good_fit: bool
    confidence: conint(ge=1, le=5) = 3  # type: ignore[valid-type]
    reason: str | None = Field(default=None, max_length=2000)
    user_rating: conint(ge=1, le=10) | None = None  # type: ignore[valid-type]
    review_time_ms: conint(ge=0) | None = None  # type: ignore[valid-type]


class ReviewFeedback(BaseModel):
    """Stored human judgment on a prospect, one row per (prospect, user)."""

    id: UUID = Field(default_factory=uuid4)
    prospect_id: UUID
    user_id: str
    is_good_fit: bool
    confidence: conint(ge=1, le=5) = 3  # type: ignore[valid-type]
    reason: str | None = None
    user_rating: conint(ge=1, le=10) | None = None  # type: ignore[valid-type]
    review_time_ms: int | None = None
    ai_fit_score: int | None = None
    ai_tags: list[CapabilityTag] = Field(default_factory=list)
    previous_status: ProspectStatus = ProspectStatus.NEW
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = {"from_attributes": True}


class FeedbackStats(BaseModel):
    total: int = 0
    good_fit: int = 0
    not_fit: int = 0
    ai_accuracy: float | None = None
    reviewed_count: int = 0
    unreviewed_count: int = 0


class DiscoveryStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_source: dict[str, int] = Field(default_factory=dict)
    by_keyword_category: dict[str, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    last_24h: int = 0
    last_7d: int = 0


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    INVALID_STATE = "invalid_state"


class TransitionResult(BaseModel):
    """Post-transition view returned by every review operation."""

    outcome: TransitionOutcome
    discovery: Discovery | None = None
    prospect: Prospect | None = None
    feedback: ReviewFeedback | None = None
    # True only when an automatic promotion created the prospect.
    auto_promoted: bool = False
    detail: str | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED
