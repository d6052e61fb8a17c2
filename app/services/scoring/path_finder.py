"""Relationship path aggregation and per-company lookup."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Protocol

from app.clients.relationship_graph import ConnectionQueryResult
from app.models.relationship import (
    CompanyConnections,
    ConnectionOrigin,
    ConnectionPath,
    ConnectionRecord,
)
from app.services.scoring.search_terms import to_search_terms

logger = logging.getLogger(__name__)

WARM_INTRO_THRESHOLD = 0.7
DEPTH_WEIGHT = 70
BREADTH_POINTS_PER_PATH = 5
BREADTH_CAP = 30


class ConnectionGraph(Protocol):
    """What the path lookup needs from a relationship-graph backend."""

    async def query_connections(
        self,
        search_term: str,
        *,
        size: int | None = None,
        title_keywords: Sequence[str] | None = None,
    ) -> ConnectionQueryResult:
        ...


def describe_record(record: ConnectionRecord) -> str:
    """Human-readable shared context for one edge."""
    if record.origin == ConnectionOrigin.WORK_HISTORY and record.organization:
        period = ""
        if record.overlap_start and record.overlap_end:
            period = f" ({record.overlap_start[:4]}-{record.overlap_end[:4]})"
        return f"Worked together at {record.organization}{period}"
    if record.origin == ConnectionOrigin.EDUCATION and record.organization:
        return f"Attended {record.organization} together"
    if record.origin == ConnectionOrigin.LINKEDIN:
        return "LinkedIn connection"
    if record.origin == ConnectionOrigin.EMAIL:
        return "Direct email correspondence"
    if record.origin == ConnectionOrigin.CALENDAR:
        return "Met in meetings"
    return "Known connection"


def build_paths(records: Iterable[ConnectionRecord]) -> list[ConnectionPath]:
    """Collapse records into one path per (connector, target person).

    A path's strength is the strongest single record for that pair, and its
    shared context joins every distinct context seen for the pair. Paths are
    returned strongest first.
    """
    grouped: dict[tuple[str, str], list[ConnectionRecord]] = {}
    for record in records:
        grouped.setdefault((record.connector_name, record.target_person_id), []).append(record)

    paths: list[ConnectionPath] = []
    for (connector, _), group in grouped.items():
        strongest = max(group, key=lambda record: record.strength)
        contexts = list(dict.fromkeys(describe_record(record) for record in group))
        origins = list(dict.fromkeys(record.origin for record in group))
        paths.append(
            ConnectionPath(
                target_person_id=strongest.target_person_id,
                target_name=strongest.target_name,
                target_title=strongest.target_title,
                target_linkedin_url=strongest.target_linkedin_url,
                connector_name=connector,
                strength=strongest.strength,
                shared_context="; ".join(contexts),
                origins=origins,
            )
        )
    # Stable sort keeps first-seen order for equal strengths.
    paths.sort(key=lambda path: path.strength, reverse=True)
    return paths


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def connection_score(paths: Sequence[ConnectionPath]) -> float:
    """Company-level score in [0, 1]: average depth plus capped breadth."""
    if not paths:
        return 0.0
    average = sum(path.strength for path in paths) / len(paths)
    breadth = min(len(paths) * BREADTH_POINTS_PER_PATH, BREADTH_CAP)
    raw = _round_half_up(average * DEPTH_WEIGHT + breadth)
    return max(0, min(100, raw)) / 100


def has_warm_intro(paths: Sequence[ConnectionPath]) -> bool:
    """True when the single strongest path clears the warm-intro bar."""
    return bool(paths) and max(path.strength for path in paths) >= WARM_INTRO_THRESHOLD


def summarize_connections(
    company_domain: str, paths: Sequence[ConnectionPath], *, search_term: str | None = None
) -> CompanyConnections:
    ordered = sorted(paths, key=lambda path: path.strength, reverse=True)
    return CompanyConnections(
        company_domain=company_domain,
        search_term=search_term,
        paths=list(ordered),
        connection_score=connection_score(ordered),
        has_warm_intro=has_warm_intro(ordered),
        warm_intro_count=sum(1 for path in ordered if path.strength >= WARM_INTRO_THRESHOLD),
        best_connector=ordered[0].connector_name if ordered else None,
    )


class PathLookup:
    """Runs search-term fallbacks against the graph for one company at a time."""

    def __init__(
        self,
        graph: ConnectionGraph,
        *,
        query_size: int | None = None,
        pause_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._graph = graph
        self._query_size = query_size
        self._pause_seconds = pause_seconds
        self._sleep = sleep

    async def find(
        self,
        company_domain: str,
        *,
        company_name: str | None = None,
        title_keywords: Sequence[str] | None = None,
    ) -> CompanyConnections:
        terms = to_search_terms(company_name, company_domain)
        for index, term in enumerate(terms):
            if index and self._pause_seconds > 0:
                await self._sleep(self._pause_seconds)
            result = await self._graph.query_connections(
                term, size=self._query_size, title_keywords=title_keywords
            )
            if result.rejected_hits:
                logger.warning(
                    "paths.rejected_hits",
                    extra={"company_domain": company_domain, "search_term": term, "rejected": result.rejected_hits},
                )
            if result.status == "found":
                summary = summarize_connections(
                    company_domain, build_paths(result.records), search_term=term
                )
                logger.info(
                    "paths.found",
                    extra={
                        "company_domain": company_domain,
                        "search_term": term,
                        "paths": len(summary.paths),
                        "connection_score": summary.connection_score,
                        "has_warm_intro": summary.has_warm_intro,
                    },
                )
                return summary
        logger.info("paths.none", extra={"company_domain": company_domain, "terms": terms})
        return CompanyConnections(company_domain=company_domain)
