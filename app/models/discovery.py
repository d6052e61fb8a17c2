"""Domain models for discoveries and prospects."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, conint, field_validator

from app.models.signals import CapabilityTag, KeywordCategory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """Where a signal was observed."""

    HN_POST = "hn_post"
    HN_COMMENT = "hn_comment"
    HN_PROFILE = "hn_profile"
    NEWS_ARTICLE = "news_article"
    REDDIT_POST = "reddit_post"
    REDDIT_COMMENT = "reddit_comment"
    TWITTER = "twitter"
    STATUS_PAGE = "status_page"
    GITHUB_ISSUE = "github_issue"
    LIST_ANALYSIS = "list_analysis"
    MANUAL = "manual"


class DiscoveryStatus(str, Enum):
    NEW = "new"
    REVIEWING = "reviewing"
    PROMOTED = "promoted"
    DISMISSED = "dismissed"
    DUPLICATE = "duplicate"


class ProspectStatus(str, Enum):
    NEW = "new"
    REVIEWING = "reviewing"
    QUALIFIED = "qualified"
    NOT_A_FIT = "not_a_fit"
    ARCHIVED = "archived"


class ProspectSource(str, Enum):
    DISCOVERY = "discovery"
    IMPORT = "import"
    MANUAL = "manual"


class Discovery(BaseModel):
    """Unconfirmed sighting of a candidate company."""

    id: UUID = Field(default_factory=uuid4)
    team_id: str
    source_kind: SourceKind
    source_ref: str = Field(..., min_length=1, description="Opaque locator, usually the source URL.")
    source_title: str | None = None
    company_domain: str = Field(..., min_length=3)
    company_name: str | None = None
    trigger_text: str = ""
    matched_keywords: list[str] = Field(default_factory=list)
    tags: list[CapabilityTag] = Field(default_factory=list)
    keyword_category: KeywordCategory | None = None
    confidence_score: conint(ge=0, le=100)  # type: ignore[valid-type]
    status: DiscoveryStatus = DiscoveryStatus.NEW
    run_id: UUID | None = None
    prospect_id: UUID | None = None
    discovered_at: datetime = Field(default_factory=_utcnow)
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("company_domain")
    @classmethod
    def _lowercase_domain(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("matched_keywords")
    @classmethod
    def _dedupe_keywords(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class Prospect(BaseModel):
    """Confirmed candidate company under active consideration."""

    id: UUID = Field(default_factory=uuid4)
    team_id: str
    company_domain: str = Field(..., min_length=3)
    company_name: str | None = None
    fit_score: conint(ge=0, le=100) = 0  # type: ignore[valid-type]
    fit_tags: list[CapabilityTag] = Field(default_factory=list)
    connection_score: float = Field(default=0.0, ge=0.0, le=1.0)
    has_warm_intro: bool = False
    warm_intro_count: int = Field(default=0, ge=0)
    best_connector: str | None = None
    connections_synced_at: datetime | None = None
    priority_score: float = 0.0
    status: ProspectStatus = ProspectStatus.NEW
    source: ProspectSource = ProspectSource.MANUAL
    discovery_id: UUID | None = None
    user_override: bool | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"from_attributes": True}

    @field_validator("company_domain")
    @classmethod
    def _lowercase_domain(cls, value: str) -> str:
        return value.strip().lower()
