"""Async client for the relationship-graph (network mapper) API."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field, ValidationError

from app.config import settings
from app.models.relationship import ConnectionOrigin, ConnectionRecord
from app.services.scoring.errors import ConfigurationError, ScoringEngineError, TransientProviderError

SEARCH_PATH = "/v2/profiles/network-mapper"


class RelationshipGraphError(ScoringEngineError):
    """Base error for relationship-graph client failures."""

    def __init__(self, message: str, code: str = "GRAPH_ERROR") -> None:
        super().__init__(message, code=code)


class RelationshipGraphRateLimitError(RelationshipGraphError, TransientProviderError):
    """Raised when the graph responds with HTTP 429."""

    def __init__(self, message: str = "Rate limited by relationship graph") -> None:
        super().__init__(message, code="GRAPH_429")


class RelationshipGraphTimeoutError(RelationshipGraphError, TransientProviderError):
    """Raised when a graph request times out."""

    def __init__(self, message: str = "Relationship graph request timed out") -> None:
        super().__init__(message, code="GRAPH_TIMEOUT")


class RelationshipGraphUpstreamError(RelationshipGraphError, TransientProviderError):
    """Raised on 5xx responses."""

    def __init__(self, message: str = "Relationship graph upstream failure") -> None:
        super().__init__(message, code="GRAPH_5XX")


class RelationshipGraphSchemaError(RelationshipGraphError):
    """Raised when the response schema is not as expected."""

    def __init__(self, message: str = "Unexpected relationship graph response schema") -> None:
        super().__init__(message, code="GRAPH_SCHEMA_ERR")


class _HitSource(BaseModel):
    origin: str
    company_name: str | None = None
    school_name: str | None = None
    overlap_start: str | None = None
    overlap_end: str | None = None


class _ProfileInfo(BaseModel):
    full_name: str
    current_title: str | None = None
    current_company: str | None = None
    linkedin_url: str | None = None


class _Hit(BaseModel):
    profile_id: str
    profile_info: _ProfileInfo
    team_member_name: str
    connection_strength: float = Field(..., ge=0.0, le=1.0)
    sources: list[_HitSource] = Field(default_factory=list)


class ConnectionQueryResult(BaseModel):
    """Validated outcome of one graph query.

    ``status`` is ``found`` when at least one usable record came back and
    ``empty`` otherwise; ``rejected_hits`` counts entries that failed
    validation and were dropped.
    """

    status: Literal["found", "empty"]
    search_term: str
    records: list[ConnectionRecord] = Field(default_factory=list)
    total: int = 0
    rejected_hits: int = 0


class RelationshipGraphClient:
    """Minimal async client for the relationship graph."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("RELATIONSHIP_GRAPH_API_KEY is required to query connections.")
        self._api_key = api_key
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=(base_url or settings.relationship_graph_base_url).rstrip("/"),
            timeout=timeout or settings.relationship_graph_timeout_seconds,
        )

    @classmethod
    def from_settings(cls) -> RelationshipGraphClient:
        return cls(settings.relationship_graph_api_key or "")

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> RelationshipGraphClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def query_connections(
        self,
        search_term: str,
        *,
        size: int | None = None,
        title_keywords: Sequence[str] | None = None,
    ) -> ConnectionQueryResult:
        """Find network members connected to people at ``search_term``."""
        if not search_term.strip():
            raise ValueError("search_term must not be blank.")
        limit = size or settings.path_query_size
        if limit <= 0:
            raise ValueError("size must be a positive integer.")

        payload = {"query": _build_query(search_term, title_keywords), "size": limit}
        headers = {"x-api-key": self._api_key, "Content-Type": "application/json"}
        try:
            response = await self._http.post(SEARCH_PATH, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise RelationshipGraphTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise RelationshipGraphUpstreamError(f"HTTP error calling relationship graph: {exc}") from exc

        if response.status_code == 429:
            raise RelationshipGraphRateLimitError()
        if response.status_code in (408, 504):
            raise RelationshipGraphTimeoutError()
        if response.status_code >= 500:
            raise RelationshipGraphUpstreamError(
                f"Relationship graph request failed: {response.status_code}"
            )
        if response.status_code >= 400:
            detail = _error_detail(response)
            message = f"Relationship graph request failed: {response.status_code}"
            if detail:
                message = f"{message} - {detail}"
            raise RelationshipGraphError(message, code=f"GRAPH_{response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise RelationshipGraphSchemaError("Failed to decode relationship graph JSON.") from exc
        return parse_search_response(data, search_term=search_term)


def _build_query(search_term: str, title_keywords: Sequence[str] | None) -> dict[str, Any]:
    must = [{"match": {"profile_info.current_company": {"query": search_term, "fuzziness": "AUTO"}}}]
    titles = [keyword for keyword in (title_keywords or []) if keyword.strip()]
    if not titles:
        return {"bool": {"must": must}}
    should = [
        {"match": {"profile_info.current_title": {"query": keyword, "fuzziness": "AUTO"}}}
        for keyword in titles
    ]
    return {"bool": {"must": must, "should": should, "minimum_should_match": 1}}


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(body, dict):
        return body.get("message") or body.get("detail")
    return None


def parse_search_response(data: Any, *, search_term: str) -> ConnectionQueryResult:
    """Convert a raw ``hits.hits[]._source`` payload into ConnectionRecords."""
    if not isinstance(data, dict):
        raise RelationshipGraphSchemaError("Response body must be a JSON object.")
    hits_block = data.get("hits")
    if hits_block is None:
        return ConnectionQueryResult(status="empty", search_term=search_term)
    hits = hits_block.get("hits") if isinstance(hits_block, dict) else None
    if not isinstance(hits, list):
        raise RelationshipGraphSchemaError("`hits.hits` missing from relationship graph response.")

    records: list[ConnectionRecord] = []
    rejected = 0
    for entry in hits:
        source = entry.get("_source") if isinstance(entry, dict) else None
        try:
            hit = _Hit.model_validate(source)
        except ValidationError:
            rejected += 1
            continue
        records.extend(_records_from_hit(hit))

    total = data.get("total")
    if isinstance(total, dict):
        total = total.get("value")
    return ConnectionQueryResult(
        status="found" if records else "empty",
        search_term=search_term,
        records=records,
        total=total if isinstance(total, int) else len(records),
        rejected_hits=rejected,
    )


def _records_from_hit(hit: _Hit) -> list[ConnectionRecord]:
    base = {
        "connector_name": hit.team_member_name,
        "target_person_id": hit.profile_id,
        "target_name": hit.profile_info.full_name,
        "target_title": hit.profile_info.current_title,
        "target_company": hit.profile_info.current_company,
        "target_linkedin_url": hit.profile_info.linkedin_url,
        "strength": hit.connection_strength,
    }
    if not hit.sources:
        return [ConnectionRecord(**base)]
    return [
        ConnectionRecord(
            **base,
            origin=ConnectionOrigin.parse(source.origin),
            organization=source.company_name or source.school_name,
            overlap_start=source.overlap_start,
            overlap_end=source.overlap_end,
        )
        for source in hit.sources
    ]
