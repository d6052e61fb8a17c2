"""Listener run bookkeeping models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from app.models.discovery import SourceKind


class RunType(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    BACKFILL = "backfill"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class RunError(BaseModel):
    ref: str | None = None
    code: str
    message: str


class ListenerRun(BaseModel):
    """Persistent record of one scan over a signal source."""

    id: UUID = Field(default_factory=uuid4)
    team_id: str
    source_kind: SourceKind
    source_name: str
    run_type: RunType = RunType.MANUAL
    status: RunStatus = RunStatus.RUNNING
    items_scanned: int = 0
    discoveries_created: int = 0
    duplicates_skipped: int = 0
    auto_promoted: int = 0
    skipped: int = 0
    errors_count: int = 0
    error_details: list[RunError] = Field(default_factory=list)
    ruleset_sha256: str | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}

    def record_error(self, *, code: str, message: str, ref: str | None = None) -> None:
        self.errors_count += 1
        self.error_details.append(RunError(ref=ref, code=code, message=message[:500]))

    def finalize(self, *, failed: bool = False) -> ListenerRun:
        if failed:
            self.status = RunStatus.FAILED
        elif self.errors_count:
            self.status = RunStatus.PARTIAL
        else:
            self.status = RunStatus.COMPLETED
        self.completed_at = datetime.now(timezone.utc)
        return self

    def summary(self) -> RunSummary:
        return RunSummary(
            run_id=self.id,
            status=self.status,
            items_scanned=self.items_scanned,
            discoveries_created=self.discoveries_created,
            duplicates_skipped=self.duplicates_skipped,
            auto_promoted=self.auto_promoted,
            skipped=self.skipped,
            errors=self.errors_count,
        )


class RunSummary(BaseModel):
    """Counts reported to the operator after a run."""

    run_id: UUID
    status: RunStatus
    items_scanned: int
    discoveries_created: int
    duplicates_skipped: int
    auto_promoted: int
    skipped: int = 0
    errors: int

    def as_log_extra(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload["run_id"] = str(self.run_id)
        return payload
