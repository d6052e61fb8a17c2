"""Relationship-graph models: raw connection edges and ranked paths."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ConnectionOrigin(str, Enum):
    """How a connector knows the target person."""

    WORK_HISTORY = "work_history"
    EDUCATION = "education"
    LINKEDIN = "linkedin"
    EMAIL = "email"
    CALENDAR = "calendar"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> ConnectionOrigin:
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.OTHER


class ConnectionRecord(BaseModel):
    """One observed edge between a network member and a person at a target company."""

    connector_name: str
    target_person_id: str
    target_name: str
    target_title: str | None = None
    target_company: str | None = None
    target_linkedin_url: str | None = None
    strength: float = Field(..., ge=0.0, le=1.0)
    origin: ConnectionOrigin = ConnectionOrigin.OTHER
    organization: str | None = Field(
        default=None, description="Shared employer or school for work/education edges."
    )
    overlap_start: str | None = None
    overlap_end: str | None = None


class ConnectionPath(BaseModel):
    """Best introduction route from one connector to one target person."""

    target_person_id: str
    target_name: str
    target_title: str | None = None
    target_linkedin_url: str | None = None
    connector_name: str
    strength: float = Field(..., ge=0.0, le=1.0)
    shared_context: str
    origins: list[ConnectionOrigin] = Field(default_factory=list)


class CompanyConnections(BaseModel):
    """Aggregated relationship view for one target company."""

    company_domain: str
    search_term: str | None = None
    paths: list[ConnectionPath] = Field(default_factory=list)
    connection_score: float = Field(default=0.0, ge=0.0, le=1.0)
    has_warm_intro: bool = False
    warm_intro_count: int = 0
    best_connector: str | None = None
