"""Candidate-text sources consumed by the listener scan."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from app.models.discovery import SourceKind
from app.services.scoring.errors import ConfigurationError

logger = logging.getLogger("pipelines.signal_sources")


@dataclass(frozen=True)
class CandidateText:
    """One text blob worth scanning for signals."""

    source_ref: str
    raw_text: str
    title: str | None = None
    published_at: datetime | None = None


class TextSignalSource(Protocol):
    """Bounded iterator over candidate texts; ordering is not guaranteed."""

    name: str
    source_kind: SourceKind

    def fetch_candidate_texts(self, limit: int | None = None) -> Iterable[CandidateText]:
        ...


class StaticSignalSource:
    """In-memory source, mostly for tests and API-triggered runs."""

    def __init__(
        self,
        items: Sequence[CandidateText],
        *,
        name: str = "static",
        source_kind: SourceKind = SourceKind.MANUAL,
    ) -> None:
        self.name = name
        self.source_kind = source_kind
        self._items = list(items)

    def fetch_candidate_texts(self, limit: int | None = None) -> Iterator[CandidateText]:
        items = self._items if limit is None else self._items[: max(0, limit)]
        yield from items


class JsonFileSignalSource:
    """Reads candidate texts from a JSON fixture.

    Accepts a list of items or an object with an ``items`` list. Each item
    needs ``source_ref`` (or ``url``) and ``text`` (or ``raw_text``).
    """

    def __init__(self, path: Path, *, source_kind: SourceKind = SourceKind.MANUAL, name: str | None = None) -> None:
        self.path = path
        self.source_kind = source_kind
        self.name = name or path.stem

    def fetch_candidate_texts(self, limit: int | None = None) -> Iterator[CandidateText]:
        emitted = 0
        for payload in self._load_items():
            if limit is not None and emitted >= limit:
                return
            candidate = _candidate_from_payload(payload)
            if candidate is None:
                logger.warning("signal_source.item_skipped", extra={"source": self.name})
                continue
            emitted += 1
            yield candidate

    def _load_items(self) -> list[Mapping[str, Any]]:
        if not self.path.exists():
            raise ConfigurationError(f"Signal fixture not found: {self.path}", code="SOURCE_NOT_FOUND")
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {self.path}: {exc}", code="SOURCE_INVALID_JSON") from exc
        if isinstance(payload, Mapping):
            payload = payload.get("items", [])
        if not isinstance(payload, list):
            raise ConfigurationError("Signal fixture must contain a list of items.", code="SOURCE_INVALID_JSON")
        return [item for item in payload if isinstance(item, Mapping)]


def _candidate_from_payload(payload: Mapping[str, Any]) -> CandidateText | None:
    source_ref = payload.get("source_ref") or payload.get("url")
    text = payload.get("raw_text") or payload.get("text")
    if not source_ref or not isinstance(text, str):
        return None
    return CandidateText(
        source_ref=str(source_ref),
        raw_text=text,
        title=payload.get("title"),
        published_at=_parse_timestamp(payload.get("published_at")),
    )


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        logger.warning("signal_source.timestamp_parse_failed", extra={"value": value})
        return None
