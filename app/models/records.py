"""SQLModel mappings for persisted discoveries, prospects, feedback and runs."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.discovery import Discovery, Prospect
from app.models.review import ReviewFeedback
from app.models.run import ListenerRun


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


def _timestamp_column(*, nullable: bool = False, server_default: bool = True) -> Column:
    return Column(
        DateTime(timezone=True),
        nullable=nullable,
        server_default=UtcNow() if server_default else None,
    )


class DiscoveryRecord(SQLModel, table=True):
    """ORM row for a Discovery."""

    __tablename__ = "discoveries"
    __table_args__ = (
        sa.UniqueConstraint("company_domain", "source_ref", name="uq_discoveries_domain_source"),
        sa.Index("ix_discoveries_team_status", "team_id", "status"),
        sa.Index("ix_discoveries_confidence", "confidence_score"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    team_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    source_kind: str = Field(sa_column=Column(String(length=64), nullable=False))
    source_ref: str = Field(sa_column=Column(String(length=2048), nullable=False))
    source_title: str | None = Field(default=None, sa_column=Column(String(length=1024)))
    company_domain: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_name: str | None = Field(default=None, sa_column=Column(String(length=255)))
    trigger_text: str = Field(default="", sa_column=Column(Text, nullable=False))
    matched_keywords: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False))
    keyword_category: str | None = Field(default=None, sa_column=Column(String(length=64)))
    confidence_score: int = Field(sa_column=Column(Integer, nullable=False))
    status: str = Field(sa_column=Column(String(length=32), nullable=False))
    run_id: UUID | None = Field(default=None, sa_column=Column(Uuid(as_uuid=True)))
    prospect_id: UUID | None = Field(default=None, sa_column=Column(Uuid(as_uuid=True)))
    discovered_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    reviewed_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True, server_default=False)
    )
    reviewed_by: str | None = Field(default=None, sa_column=Column(String(length=255)))
    notes: str | None = Field(default=None, sa_column=Column(Text))

    @classmethod
    def from_discovery(cls, discovery: Discovery) -> DiscoveryRecord:
        payload = discovery.model_dump(mode="json")
        return cls(
            **{
                **payload,
                "id": discovery.id,
                "run_id": discovery.run_id,
                "prospect_id": discovery.prospect_id,
                "discovered_at": discovery.discovered_at,
                "reviewed_at": discovery.reviewed_at,
            }
        )

    def to_discovery(self) -> Discovery:
        return Discovery(
            id=self.id,
            team_id=self.team_id,
            source_kind=self.source_kind,
            source_ref=self.source_ref,
            source_title=self.source_title,
            company_domain=self.company_domain,
            company_name=self.company_name,
            trigger_text=self.trigger_text,
            matched_keywords=list(self.matched_keywords or []),
            tags=list(self.tags or []),
            keyword_category=self.keyword_category,
            confidence_score=self.confidence_score,
            status=self.status,
            run_id=self.run_id,
            prospect_id=self.prospect_id,
            discovered_at=_as_utc(self.discovered_at),
            reviewed_at=_as_utc(self.reviewed_at),
            reviewed_by=self.reviewed_by,
            notes=self.notes,
        )

    def apply(self, discovery: Discovery) -> None:
        """Copy mutable fields from the domain model onto this row."""
        self.status = discovery.status.value
        self.confidence_score = discovery.confidence_score
        self.matched_keywords = list(discovery.matched_keywords)
        self.tags = [tag.value for tag in discovery.tags]
        self.trigger_text = discovery.trigger_text
        self.keyword_category = discovery.keyword_category.value if discovery.keyword_category else None
        self.prospect_id = discovery.prospect_id
        self.reviewed_at = discovery.reviewed_at
        self.reviewed_by = discovery.reviewed_by
        self.notes = discovery.notes


class ProspectRecord(SQLModel, table=True):
    """ORM row for a Prospect; one per domain per team."""

    __tablename__ = "prospects"
    __table_args__ = (
        sa.UniqueConstraint("team_id", "company_domain", name="uq_prospects_team_domain"),
        sa.Index("ix_prospects_team_priority", "team_id", "priority_score"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    team_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_domain: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_name: str | None = Field(default=None, sa_column=Column(String(length=255)))
    fit_score: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    fit_tags: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    connection_score: float = Field(default=0.0, sa_column=Column(Float, nullable=False))
    has_warm_intro: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    warm_intro_count: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    best_connector: str | None = Field(default=None, sa_column=Column(String(length=255)))
    connections_synced_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True, server_default=False)
    )
    priority_score: float = Field(default=0.0, sa_column=Column(Float, nullable=False))
    status: str = Field(sa_column=Column(String(length=32), nullable=False))
    source: str = Field(sa_column=Column(String(length=32), nullable=False))
    discovery_id: UUID | None = Field(default=None, sa_column=Column(Uuid(as_uuid=True)))
    user_override: bool | None = Field(default=None, sa_column=Column(Boolean))
    reviewed_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True, server_default=False)
    )
    reviewed_by: str | None = Field(default=None, sa_column=Column(String(length=255)))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())

    @classmethod
    def from_prospect(cls, prospect: Prospect) -> ProspectRecord:
        record = cls(
            id=prospect.id,
            team_id=prospect.team_id,
            company_domain=prospect.company_domain,
            status=prospect.status.value,
            source=prospect.source.value,
            created_at=prospect.created_at,
        )
        record.apply(prospect)
        record.discovery_id = prospect.discovery_id
        return record

    def to_prospect(self) -> Prospect:
        return Prospect(
            id=self.id,
            team_id=self.team_id,
            company_domain=self.company_domain,
            company_name=self.company_name,
            fit_score=self.fit_score,
            fit_tags=list(self.fit_tags or []),
            connection_score=self.connection_score,
            has_warm_intro=self.has_warm_intro,
            warm_intro_count=self.warm_intro_count,
            best_connector=self.best_connector,
            connections_synced_at=_as_utc(self.connections_synced_at),
            priority_score=self.priority_score,
            status=self.status,
            source=self.source,
            discovery_id=self.discovery_id,
            user_override=self.user_override,
            reviewed_at=_as_utc(self.reviewed_at),
            reviewed_by=self.reviewed_by,
            created_at=_as_utc(self.created_at),
        )

    def apply(self, prospect: Prospect) -> None:
        """Copy mutable fields from the domain model onto this row."""
        self.company_name = prospect.company_name
        self.fit_score = prospect.fit_score
        self.fit_tags = [tag.value for tag in prospect.fit_tags]
        self.apply_connections(prospect)
        self.priority_score = prospect.priority_score
        self.apply_review_state(prospect)

    def apply_connections(self, prospect: Prospect) -> None:
        """Relationship fields only; written by the connection sync."""
        self.connection_score = prospect.connection_score
        self.has_warm_intro = prospect.has_warm_intro
        self.warm_intro_count = prospect.warm_intro_count
        self.best_connector = prospect.best_connector
        self.connections_synced_at = prospect.connections_synced_at

    def apply_review_state(self, prospect: Prospect) -> None:
        """Status and reviewer fields only; written by feedback and undo."""
        self.status = prospect.status.value
        self.user_override = prospect.user_override
        self.reviewed_at = prospect.reviewed_at
        self.reviewed_by = prospect.reviewed_by


class FeedbackRecord(SQLModel, table=True):
    """ORM row for reviewer feedback; upserted per (prospect, user)."""

    __tablename__ = "prospect_feedback"
    __table_args__ = (
        sa.UniqueConstraint("prospect_id", "user_id", name="uq_prospect_feedback_prospect_user"),
        sa.Index("ix_prospect_feedback_prospect", "prospect_id"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    prospect_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), nullable=False))
    user_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    is_good_fit: bool = Field(sa_column=Column(Boolean, nullable=False))
    confidence: int = Field(default=3, sa_column=Column(Integer, nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(Text))
    user_rating: int | None = Field(default=None, sa_column=Column(Integer))
    review_time_ms: int | None = Field(default=None, sa_column=Column(Integer))
    ai_fit_score: int | None = Field(default=None, sa_column=Column(Integer))
    ai_tags: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    previous_status: str = Field(sa_column=Column(String(length=32), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())

    @classmethod
    def from_feedback(cls, feedback: ReviewFeedback) -> FeedbackRecord:
        payload: dict[str, Any] = feedback.model_dump(mode="json")
        payload.update(
            id=feedback.id,
            prospect_id=feedback.prospect_id,
            created_at=feedback.created_at,
            updated_at=feedback.updated_at,
        )
        return cls(**payload)

    def to_feedback(self) -> ReviewFeedback:
        return ReviewFeedback(
            id=self.id,
            prospect_id=self.prospect_id,
            user_id=self.user_id,
            is_good_fit=self.is_good_fit,
            confidence=self.confidence,
            reason=self.reason,
            user_rating=self.user_rating,
            review_time_ms=self.review_time_ms,
            ai_fit_score=self.ai_fit_score,
            ai_tags=list(self.ai_tags or []),
            previous_status=self.previous_status,
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )


class ListenerRunRecord(SQLModel, table=True):
    """ORM row for a scan run and its counters."""

    __tablename__ = "listener_runs"
    __table_args__ = (sa.Index("ix_listener_runs_team_started", "team_id", "started_at"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    team_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    source_kind: str = Field(sa_column=Column(String(length=64), nullable=False))
    source_name: str = Field(sa_column=Column(String(length=255), nullable=False))
    run_type: str = Field(sa_column=Column(String(length=32), nullable=False))
    status: str = Field(sa_column=Column(String(length=32), nullable=False))
    items_scanned: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    discoveries_created: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    duplicates_skipped: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    auto_promoted: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    skipped: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    errors_count: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    error_details: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    ruleset_sha256: str | None = Field(default=None, sa_column=Column(String(length=64)))
    started_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    completed_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True, server_default=False)
    )

    @classmethod
    def from_run(cls, run: ListenerRun) -> ListenerRunRecord:
        payload = run.model_dump(mode="json")
        payload.update(id=run.id, started_at=run.started_at, completed_at=run.completed_at)
        return cls(**payload)

    def to_run(self) -> ListenerRun:
        return ListenerRun(
            id=self.id,
            team_id=self.team_id,
            source_kind=self.source_kind,
            source_name=self.source_name,
            run_type=self.run_type,
            status=self.status,
            items_scanned=self.items_scanned,
            discoveries_created=self.discoveries_created,
            duplicates_skipped=self.duplicates_skipped,
            auto_promoted=self.auto_promoted,
            skipped=self.skipped,
            errors_count=self.errors_count,
            error_details=list(self.error_details or []),
            ruleset_sha256=self.ruleset_sha256,
            started_at=_as_utc(self.started_at),
            completed_at=_as_utc(self.completed_at),
        )

    def apply(self, run: ListenerRun) -> None:
        self.status = run.status.value
        self.items_scanned = run.items_scanned
        self.discoveries_created = run.discoveries_created
        self.duplicates_skipped = run.duplicates_skipped
        self.auto_promoted = run.auto_promoted
        self.skipped = run.skipped
        self.errors_count = run.errors_count
        self.error_details = [entry.model_dump(mode="json") for entry in run.error_details]
        self.completed_at = run.completed_at
