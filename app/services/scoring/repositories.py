"""Persistence backends for discoveries, prospects, feedback and runs."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from app.config import settings
from app.core.database import build_engine, check_database_health
from app.models.discovery import Discovery, DiscoveryStatus, Prospect, ProspectStatus, SourceKind
from app.models.records import DiscoveryRecord, FeedbackRecord, ListenerRunRecord, ProspectRecord
from app.models.review import ReviewFeedback
from app.models.run import ListenerRun
from app.observability.metrics import metrics
from app.services.scoring.errors import PersistenceError
from app.services.scoring.priority import priority_score

logger = logging.getLogger(__name__)

CONNECTION_FIELDS = (
    "connection_score",
    "has_warm_intro",
    "warm_intro_count",
    "best_connector",
    "connections_synced_at",
)
REVIEW_STATE_FIELDS = ("status", "reviewed_at", "reviewed_by", "user_override")


class DiscoveryOrder(str, Enum):
    CONFIDENCE = "confidence"
    RECENT = "recent"


class ProspectingRepository(Protocol):
    """Persistence contract for the scoring engine.

    ``insert_*`` calls are the only contested writes; they return the stored
    row and whether this call created it, so a lost race reads as a
    duplicate instead of an error.
    """

    backend: str

    def insert_discovery(self, discovery: Discovery) -> tuple[Discovery, bool]:
        ...

    def get_discovery(self, discovery_id: UUID) -> Discovery | None:
        ...

    def find_discovery(self, company_domain: str, source_ref: str) -> Discovery | None:
        ...

    def save_discovery(self, discovery: Discovery) -> Discovery:
        ...

    def list_discoveries(
        self,
        team_id: str,
        *,
        statuses: Sequence[DiscoveryStatus] | None = None,
        source_kinds: Sequence[SourceKind] | None = None,
        min_confidence: int | None = None,
        max_confidence: int | None = None,
        order_by: DiscoveryOrder = DiscoveryOrder.CONFIDENCE,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Discovery]:
        ...

    def insert_prospect(self, prospect: Prospect) -> tuple[Prospect, bool]:
        ...

    def get_prospect(self, prospect_id: UUID) -> Prospect | None:
        ...

    def find_prospect(self, team_id: str, company_domain: str) -> Prospect | None:
        ...

    def save_prospect(self, prospect: Prospect) -> Prospect:
        ...

    def save_connections(self, prospect: Prospect) -> Prospect:
        """Write only the relationship fields and recompute priority from the stored fit."""
        ...

    def save_review_state(self, prospect: Prospect) -> Prospect:
        """Write only status and reviewer fields."""
        ...

    def list_prospects(
        self,
        team_id: str,
        *,
        statuses: Sequence[ProspectStatus] | None = None,
        reviewed: bool | None = None,
    ) -> list[Prospect]:
        ...

    def upsert_feedback(self, feedback: ReviewFeedback) -> ReviewFeedback:
        ...

    def get_feedback(self, prospect_id: UUID, user_id: str) -> ReviewFeedback | None:
        ...

    def latest_feedback(self, prospect_id: UUID) -> ReviewFeedback | None:
        ...

    def delete_feedback(self, feedback_id: UUID) -> None:
        ...

    def list_feedback(self, team_id: str) -> list[ReviewFeedback]:
        ...

    def save_run(self, run: ListenerRun) -> ListenerRun:
        ...

    def get_run(self, run_id: UUID) -> ListenerRun | None:
        ...

    def list_runs(self, team_id: str, *, limit: int = 20) -> list[ListenerRun]:
        ...

    def healthy(self) -> bool:
        ...


def _record_event(event: str, backend: str, **fields: Any) -> None:
    metrics.increment(event, tags={"repository": backend})
    logger.info(event, extra={**fields, "backend": backend})


def _matches_discovery_filters(
    discovery: Discovery,
    team_id: str,
    statuses: Sequence[DiscoveryStatus] | None,
    source_kinds: Sequence[SourceKind] | None,
    min_confidence: int | None,
    max_confidence: int | None,
) -> bool:
    if discovery.team_id != team_id:
        return False
    if statuses and discovery.status not in statuses:
        return False
    if source_kinds and discovery.source_kind not in source_kinds:
        return False
    if min_confidence is not None and discovery.confidence_score < min_confidence:
        return False
    return max_confidence is None or discovery.confidence_score <= max_confidence


def _paginate(items: list[Any], limit: int | None, offset: int) -> list[Any]:
    start = max(0, offset)
    if limit is None:
        return items[start:]
    return items[start : start + max(0, limit)]


class InMemoryProspectingRepository(ProspectingRepository):
    """Thread-safe repository used for tests and local runs.

    Mirrors the database unique keys: (company_domain, source_ref) for
    discoveries, (team_id, company_domain) for prospects and (prospect_id,
    user_id) for feedback.
    """

    backend = "memory"

    def __init__(self) -> None:
        self._discoveries: dict[UUID, Discovery] = {}
        self._discovery_keys: dict[tuple[str, str], UUID] = {}
        self._prospects: dict[UUID, Prospect] = {}
        self._prospect_keys: dict[tuple[str, str], UUID] = {}
        self._feedback: dict[tuple[UUID, str], ReviewFeedback] = {}
        self._runs: dict[UUID, ListenerRun] = {}
        self._lock = Lock()

    def insert_discovery(self, discovery: Discovery) -> tuple[Discovery, bool]:
        key = (discovery.company_domain, discovery.source_ref)
        with self._lock:
            existing_id = self._discovery_keys.get(key)
            if existing_id is not None:
                existing = self._discoveries[existing_id].model_copy(deep=True)
            else:
                self._discoveries[discovery.id] = discovery.model_copy(deep=True)
                self._discovery_keys[key] = discovery.id
                existing = None
        if existing is not None:
            _record_event("discovery.persistence.conflict", self.backend, company_domain=key[0])
            return existing, False
        _record_event("discovery.persistence.persisted", self.backend, company_domain=key[0])
        return discovery.model_copy(deep=True), True

    def get_discovery(self, discovery_id: UUID) -> Discovery | None:
        with self._lock:
            found = self._discoveries.get(discovery_id)
            return found.model_copy(deep=True) if found else None

    def find_discovery(self, company_domain: str, source_ref: str) -> Discovery | None:
        with self._lock:
            found_id = self._discovery_keys.get((company_domain.lower(), source_ref))
            return self._discoveries[found_id].model_copy(deep=True) if found_id else None

    def save_discovery(self, discovery: Discovery) -> Discovery:
        with self._lock:
            if discovery.id not in self._discoveries:
                raise PersistenceError("Discovery does not exist.", code="404_NOT_FOUND")
            self._discoveries[discovery.id] = discovery.model_copy(deep=True)
        return discovery

    def list_discoveries(
        self,
        team_id: str,
        *,
        statuses: Sequence[DiscoveryStatus] | None = None,
        source_kinds: Sequence[SourceKind] | None = None,
        min_confidence: int | None = None,
        max_confidence: int | None = None,
        order_by: DiscoveryOrder = DiscoveryOrder.CONFIDENCE,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Discovery]:
        with self._lock:
            matches = [
                discovery.model_copy(deep=True)
                for discovery in self._discoveries.values()
                if _matches_discovery_filters(
                    discovery, team_id, statuses, source_kinds, min_confidence, max_confidence
                )
            ]
        if order_by == DiscoveryOrder.RECENT:
            matches.sort(key=lambda entry: entry.discovered_at, reverse=True)
        else:
            matches.sort(key=lambda entry: (entry.confidence_score, entry.discovered_at), reverse=True)
        return _paginate(matches, limit, offset)

    def insert_prospect(self, prospect: Prospect) -> tuple[Prospect, bool]:
        key = (prospect.team_id, prospect.company_domain)
        with self._lock:
            existing_id = self._prospect_keys.get(key)
            if existing_id is not None:
                existing = self._prospects[existing_id].model_copy(deep=True)
            else:
                self._prospects[prospect.id] = prospect.model_copy(deep=True)
                self._prospect_keys[key] = prospect.id
                existing = None
        if existing is not None:
            _record_event("prospect.persistence.conflict", self.backend, company_domain=key[1])
            return existing, False
        _record_event("prospect.persistence.persisted", self.backend, company_domain=key[1])
        return prospect.model_copy(deep=True), True

    def get_prospect(self, prospect_id: UUID) -> Prospect | None:
        with self._lock:
            found = self._prospects.get(prospect_id)
            return found.model_copy(deep=True) if found else None

    def find_prospect(self, team_id: str, company_domain: str) -> Prospect | None:
        with self._lock:
            found_id = self._prospect_keys.get((team_id, company_domain.lower()))
            return self._prospects[found_id].model_copy(deep=True) if found_id else None

    def save_prospect(self, prospect: Prospect) -> Prospect:
        with self._lock:
            if prospect.id not in self._prospects:
                raise PersistenceError("Prospect does not exist.", code="404_NOT_FOUND")
            self._prospects[prospect.id] = prospect.model_copy(deep=True)
        return prospect

    def save_connections(self, prospect: Prospect) -> Prospect:
        return self._update_prospect(prospect, CONNECTION_FIELDS, reprioritize=True)

    def save_review_state(self, prospect: Prospect) -> Prospect:
        return self._update_prospect(prospect, REVIEW_STATE_FIELDS)

    def _update_prospect(
        self, prospect: Prospect, fields: tuple[str, ...], *, reprioritize: bool = False
    ) -> Prospect:
        with self._lock:
            stored = self._prospects.get(prospect.id)
            if stored is None:
                raise PersistenceError("Prospect does not exist.", code="404_NOT_FOUND")
            updated = stored.model_copy(deep=True, update={field: getattr(prospect, field) for field in fields})
            if reprioritize:
                updated.priority_score = priority_score(updated.fit_score, updated.connection_score)
            self._prospects[prospect.id] = updated
            return updated.model_copy(deep=True)

    def list_prospects(
        self,
        team_id: str,
        *,
        statuses: Sequence[ProspectStatus] | None = None,
        reviewed: bool | None = None,
    ) -> list[Prospect]:
        with self._lock:
            prospects = [entry.model_copy(deep=True) for entry in self._prospects.values()]
        return [
            prospect
            for prospect in prospects
            if prospect.team_id == team_id
            and (not statuses or prospect.status in statuses)
            and (reviewed is None or (prospect.reviewed_at is not None) == reviewed)
        ]

    def upsert_feedback(self, feedback: ReviewFeedback) -> ReviewFeedback:
        key = (feedback.prospect_id, feedback.user_id)
        with self._lock:
            existing = self._feedback.get(key)
            if existing is not None:
                feedback = feedback.model_copy(
                    update={"id": existing.id, "created_at": existing.created_at}
                )
            self._feedback[key] = feedback.model_copy(deep=True)
        _record_event("feedback.persistence.persisted", self.backend, prospect_id=str(key[0]))
        return feedback

    def get_feedback(self, prospect_id: UUID, user_id: str) -> ReviewFeedback | None:
        with self._lock:
            found = self._feedback.get((prospect_id, user_id))
            return found.model_copy(deep=True) if found else None

    def latest_feedback(self, prospect_id: UUID) -> ReviewFeedback | None:
        with self._lock:
            rows = [entry for (pid, _), entry in self._feedback.items() if pid == prospect_id]
        if not rows:
            return None
        return max(rows, key=lambda entry: entry.updated_at).model_copy(deep=True)

    def delete_feedback(self, feedback_id: UUID) -> None:
        with self._lock:
            for key, entry in list(self._feedback.items()):
                if entry.id == feedback_id:
                    del self._feedback[key]

    def list_feedback(self, team_id: str) -> list[ReviewFeedback]:
        with self._lock:
            team_prospects = {pid for pid, entry in self._prospects.items() if entry.team_id == team_id}
            return [
                entry.model_copy(deep=True)
                for (pid, _), entry in self._feedback.items()
                if pid in team_prospects
            ]

    def save_run(self, run: ListenerRun) -> ListenerRun:
        with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
        return run

    def get_run(self, run_id: UUID) -> ListenerRun | None:
        with self._lock:
            found = self._runs.get(run_id)
            return found.model_copy(deep=True) if found else None

    def list_runs(self, team_id: str, *, limit: int = 20) -> list[ListenerRun]:
        with self._lock:
            runs = [entry.model_copy(deep=True) for entry in self._runs.values() if entry.team_id == team_id]
        runs.sort(key=lambda entry: entry.started_at, reverse=True)
        return runs[: max(0, limit)]

    def healthy(self) -> bool:
        return True


class DatabaseProspectingRepository(ProspectingRepository):
    """SQLModel-backed repository for Postgres/Supabase or SQLite."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
    ) -> None:
        self._engine, self.backend = build_engine(
            database_url, pool_min_size=pool_min_size, pool_max_size=pool_max_size
        )
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def healthy(self) -> bool:
        return check_database_health(self._engine)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with Session(self._engine) as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception(
                "scoring.persistence.error", extra={"operation": operation, "backend": self.backend}
            )
            raise PersistenceError(f"Failed to {operation}.", code="500_INTERNAL") from exc

    # discoveries

    def insert_discovery(self, discovery: Discovery) -> tuple[Discovery, bool]:
        record = DiscoveryRecord.from_discovery(discovery)
        try:
            with self._session("insert discovery") as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                stored = record.to_discovery()
        except IntegrityError:
            existing = self.find_discovery(discovery.company_domain, discovery.source_ref)
            if existing is None:
                raise PersistenceError(
                    "Discovery insert conflicted but no row was found.", code="409_CONFLICT"
                ) from None
            _record_event(
                "discovery.persistence.conflict", self.backend, company_domain=discovery.company_domain
            )
            return existing, False
        _record_event(
            "discovery.persistence.persisted", self.backend, company_domain=discovery.company_domain
        )
        return stored, True

    def get_discovery(self, discovery_id: UUID) -> Discovery | None:
        with self._session("load discovery") as session:
            record = session.get(DiscoveryRecord, discovery_id)
            return record.to_discovery() if record else None

    def find_discovery(self, company_domain: str, source_ref: str) -> Discovery | None:
        with self._session("load discovery") as session:
            statement = select(DiscoveryRecord).where(
                DiscoveryRecord.company_domain == company_domain.lower(),
                DiscoveryRecord.source_ref == source_ref,
            )
            record = session.exec(statement).first()
            return record.to_discovery() if record else None

    def save_discovery(self, discovery: Discovery) -> Discovery:
        with self._session("save discovery") as session:
            record = session.get(DiscoveryRecord, discovery.id)
            if record is None:
                raise PersistenceError("Discovery does not exist.", code="404_NOT_FOUND")
            record.apply(discovery)
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_discovery()

    def list_discoveries(
        self,
        team_id: str,
        *,
        statuses: Sequence[DiscoveryStatus] | None = None,
        source_kinds: Sequence[SourceKind] | None = None,
        min_confidence: int | None = None,
        max_confidence: int | None = None,
        order_by: DiscoveryOrder = DiscoveryOrder.CONFIDENCE,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Discovery]:
        statement = select(DiscoveryRecord).where(DiscoveryRecord.team_id == team_id)
        if statuses:
            statement = statement.where(DiscoveryRecord.status.in_([status.value for status in statuses]))
        if source_kinds:
            statement = statement.where(
                DiscoveryRecord.source_kind.in_([kind.value for kind in source_kinds])
            )
        if min_confidence is not None:
            statement = statement.where(DiscoveryRecord.confidence_score >= min_confidence)
        if max_confidence is not None:
            statement = statement.where(DiscoveryRecord.confidence_score <= max_confidence)
        if order_by == DiscoveryOrder.RECENT:
            statement = statement.order_by(DiscoveryRecord.discovered_at.desc())
        else:
            statement = statement.order_by(
                DiscoveryRecord.confidence_score.desc(), DiscoveryRecord.discovered_at.desc()
            )
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(max(0, limit))
        with self._session("list discoveries") as session:
            return [record.to_discovery() for record in session.exec(statement).all()]

    # prospects

    def insert_prospect(self, prospect: Prospect) -> tuple[Prospect, bool]:
        record = ProspectRecord.from_prospect(prospect)
        try:
            with self._session("insert prospect") as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                stored = record.to_prospect()
        except IntegrityError:
            existing = self.find_prospect(prospect.team_id, prospect.company_domain)
            if existing is None:
                raise PersistenceError(
                    "Prospect insert conflicted but no row was found.", code="409_CONFLICT"
                ) from None
            _record_event(
                "prospect.persistence.conflict", self.backend, company_domain=prospect.company_domain
            )
            return existing, False
        _record_event(
            "prospect.persistence.persisted", self.backend, company_domain=prospect.company_domain
        )
        return stored, True

    def get_prospect(self, prospect_id: UUID) -> Prospect | None:
        with self._session("load prospect") as session:
            record = session.get(ProspectRecord, prospect_id)
            return record.to_prospect() if record else None

    def find_prospect(self, team_id: str, company_domain: str) -> Prospect | None:
        with self._session("load prospect") as session:
            statement = select(ProspectRecord).where(
                ProspectRecord.team_id == team_id,
                ProspectRecord.company_domain == company_domain.lower(),
            )
            record = session.exec(statement).first()
            return record.to_prospect() if record else None

    def save_prospect(self, prospect: Prospect) -> Prospect:
        with self._session("save prospect") as session:
            record = session.get(ProspectRecord, prospect.id)
            if record is None:
                raise PersistenceError("Prospect does not exist.", code="404_NOT_FOUND")
            record.apply(prospect)
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_prospect()

    def save_connections(self, prospect: Prospect) -> Prospect:
        with self._session("save connections") as session:
            record = session.get(ProspectRecord, prospect.id)
            if record is None:
                raise PersistenceError("Prospect does not exist.", code="404_NOT_FOUND")
            record.apply_connections(prospect)
            record.priority_score = priority_score(record.fit_score, record.connection_score)
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_prospect()

    def save_review_state(self, prospect: Prospect) -> Prospect:
        with self._session("save review state") as session:
            record = session.get(ProspectRecord, prospect.id)
            if record is None:
                raise PersistenceError("Prospect does not exist.", code="404_NOT_FOUND")
            record.apply_review_state(prospect)
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_prospect()

    def list_prospects(
        self,
        team_id: str,
        *,
        statuses: Sequence[ProspectStatus] | None = None,
        reviewed: bool | None = None,
    ) -> list[Prospect]:
        statement = select(ProspectRecord).where(ProspectRecord.team_id == team_id)
        if statuses:
            statement = statement.where(ProspectRecord.status.in_([status.value for status in statuses]))
        if reviewed is True:
            statement = statement.where(ProspectRecord.reviewed_at.is_not(None))
        elif reviewed is False:
            statement = statement.where(ProspectRecord.reviewed_at.is_(None))
        with self._session("list prospects") as session:
            return [record.to_prospect() for record in session.exec(statement).all()]

    # feedback

    def upsert_feedback(self, feedback: ReviewFeedback) -> ReviewFeedback:
        try:
            return self._write_feedback(feedback)
        except IntegrityError:
            # A concurrent first submission won; retry as an update.
            logger.warning(
                "feedback.persistence.conflict",
                extra={"prospect_id": str(feedback.prospect_id), "backend": self.backend},
            )
            return self._write_feedback(feedback)

    def _write_feedback(self, feedback: ReviewFeedback) -> ReviewFeedback:
        with self._session("upsert feedback") as session:
            statement = select(FeedbackRecord).where(
                FeedbackRecord.prospect_id == feedback.prospect_id,
                FeedbackRecord.user_id == feedback.user_id,
            )
            existing = session.exec(statement).first()
            if existing is not None:
                incoming = FeedbackRecord.from_feedback(feedback)
                for field in (
                    "is_good_fit", "confidence", "reason", "user_rating", "review_time_ms",
                    "ai_fit_score", "ai_tags", "previous_status",
                ):
                    setattr(existing, field, getattr(incoming, field))
                existing.updated_at = datetime.now(timezone.utc)
                record = existing
            else:
                record = FeedbackRecord.from_feedback(feedback)
            session.add(record)
            session.commit()
            session.refresh(record)
            _record_event("feedback.persistence.persisted", self.backend, prospect_id=str(record.prospect_id))
            return record.to_feedback()

    def get_feedback(self, prospect_id: UUID, user_id: str) -> ReviewFeedback | None:
        with self._session("load feedback") as session:
            statement = select(FeedbackRecord).where(
                FeedbackRecord.prospect_id == prospect_id,
                FeedbackRecord.user_id == user_id,
            )
            record = session.exec(statement).first()
            return record.to_feedback() if record else None

    def latest_feedback(self, prospect_id: UUID) -> ReviewFeedback | None:
        with self._session("load feedback") as session:
            statement = (
                select(FeedbackRecord)
                .where(FeedbackRecord.prospect_id == prospect_id)
                .order_by(FeedbackRecord.updated_at.desc())
            )
            record = session.exec(statement).first()
            return record.to_feedback() if record else None

    def delete_feedback(self, feedback_id: UUID) -> None:
        with self._session("delete feedback") as session:
            record = session.get(FeedbackRecord, feedback_id)
            if record is not None:
                session.delete(record)
                session.commit()

    def list_feedback(self, team_id: str) -> list[ReviewFeedback]:
        statement = (
            select(FeedbackRecord)
            .join(ProspectRecord, ProspectRecord.id == FeedbackRecord.prospect_id)
            .where(ProspectRecord.team_id == team_id)
        )
        with self._session("list feedback") as session:
            return [record.to_feedback() for record in session.exec(statement).all()]

    # runs

    def save_run(self, run: ListenerRun) -> ListenerRun:
        with self._session("save run") as session:
            record = session.get(ListenerRunRecord, run.id)
            if record is None:
                record = ListenerRunRecord.from_run(run)
            else:
                record.apply(run)
            session.add(record)
            session.commit()
        return run

    def get_run(self, run_id: UUID) -> ListenerRun | None:
        with self._session("load run") as session:
            record = session.get(ListenerRunRecord, run_id)
            return record.to_run() if record else None

    def list_runs(self, team_id: str, *, limit: int = 20) -> list[ListenerRun]:
        statement = (
            select(ListenerRunRecord)
            .where(ListenerRunRecord.team_id == team_id)
            .order_by(ListenerRunRecord.started_at.desc())
            .limit(max(0, limit))
        )
        with self._session("list runs") as session:
            return [record.to_run() for record in session.exec(statement).all()]


def build_repository(database_url: str | None = None) -> ProspectingRepository:
    """Instantiate a repository using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("scoring.repository.initialized", extra={"backend": "memory"})
        return InMemoryProspectingRepository()
    try:
        repository = DatabaseProspectingRepository(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
        )
        logger.info("scoring.repository.initialized", extra={"backend": repository.backend})
        return repository
    except Exception:
        logger.exception("scoring.repository.init_failed", extra={"backend": "database"})
        raise
