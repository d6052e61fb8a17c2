from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.clients.relationship_graph import (
    SEARCH_PATH,
    RelationshipGraphClient,
    RelationshipGraphError,
    RelationshipGraphRateLimitError,
    RelationshipGraphSchemaError,
    RelationshipGraphTimeoutError,
    RelationshipGraphUpstreamError,
    parse_search_response,
)
from app.models.relationship import ConnectionOrigin
from app.services.scoring.errors import ConfigurationError, TransientProviderError


def _hit(profile_id: str, connector: str, strength: float, sources: list[dict] | None = None) -> dict:
    return {
        "_source": {
            "profile_id": profile_id,
            "profile_info": {
                "full_name": f"Person {profile_id}",
                "current_title": "CTO",
                "current_company": "Target",
                "linkedin_url": f"https://linkedin.com/in/{profile_id}",
            },
            "team_member_name": connector,
            "connection_strength": strength,
            "sources": sources or [],
        }
    }


def _run_query(handler, **kwargs):
    async def _call():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://graph.test") as http:
            client = RelationshipGraphClient("secret-key", http_client=http)
            return await client.query_connections("Target", **kwargs)

    return asyncio.run(_call())


def test_query_sends_expected_request_and_parses_hits():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["api_key"] = request.headers.get("x-api-key")
        captured["body"] = json.loads(request.content)
        payload = {
            "hits": {
                "hits": [
                    _hit(
                        "p-1",
                        "Ana",
                        0.8,
                        [
                            {
                                "origin": "work_history",
                                "company_name": "Globex",
                                "overlap_start": "2019-01-01",
                                "overlap_end": "2021-06-30",
                            }
                        ],
                    ),
                    _hit("p-2", "Dana", 0.3, [{"origin": "email"}]),
                ]
            },
            "total": {"value": 2},
        }
        return httpx.Response(200, json=payload)

    result = _run_query(handler, size=10, title_keywords=["CTO", " "])

    assert captured["path"] == SEARCH_PATH
    assert captured["api_key"] == "secret-key"
    assert captured["body"]["size"] == 10
    query = captured["body"]["query"]["bool"]
    assert query["must"][0]["match"]["profile_info.current_company"]["query"] == "Target"
    assert len(query["should"]) == 1
    assert query["minimum_should_match"] == 1

    assert result.status == "found"
    assert result.total == 2
    assert [record.connector_name for record in result.records] == ["Ana", "Dana"]
    assert result.records[0].origin == ConnectionOrigin.WORK_HISTORY
    assert result.records[0].organization == "Globex"
    assert result.records[1].origin == ConnectionOrigin.EMAIL


def test_query_without_titles_has_no_should_clause():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"hits": {"hits": []}})

    result = _run_query(handler)

    assert "should" not in captured["body"]["query"]["bool"]
    assert result.status == "empty"
    assert result.records == []


@pytest.mark.parametrize(
    "status_code, error_type, code",
    [
        (429, RelationshipGraphRateLimitError, "GRAPH_429"),
        (504, RelationshipGraphTimeoutError, "GRAPH_TIMEOUT"),
        (503, RelationshipGraphUpstreamError, "GRAPH_5XX"),
        (401, RelationshipGraphError, "GRAPH_401"),
    ],
)
def test_http_errors_map_to_typed_exceptions(status_code, error_type, code):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"message": "nope"})

    with pytest.raises(error_type) as excinfo:
        _run_query(handler)

    assert excinfo.value.code == code


def test_only_transient_failures_are_retryable():
    assert issubclass(RelationshipGraphRateLimitError, TransientProviderError)
    assert issubclass(RelationshipGraphUpstreamError, TransientProviderError)
    assert not issubclass(RelationshipGraphSchemaError, TransientProviderError)


def test_client_error_message_includes_detail():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"detail": "key revoked"})

    with pytest.raises(RelationshipGraphError) as excinfo:
        _run_query(handler)

    assert "key revoked" in str(excinfo.value)


def test_transport_timeout_is_mapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(RelationshipGraphTimeoutError):
        _run_query(handler)


def test_invalid_json_is_schema_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"})

    with pytest.raises(RelationshipGraphSchemaError):
        _run_query(handler)


def test_missing_api_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        RelationshipGraphClient("")


def test_blank_search_term_is_rejected():
    async def _call():
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200))) as http:
            await RelationshipGraphClient("k", http_client=http).query_connections("  ")

    with pytest.raises(ValueError):
        asyncio.run(_call())


def test_parse_drops_invalid_hits_and_counts_them():
    payload = {
        "hits": {
            "hits": [
                _hit("p-1", "Ana", 0.9),
                {"_source": {"profile_id": "p-2", "connection_strength": 2.0}},
                "not-a-hit",
            ]
        }
    }

    result = parse_search_response(payload, search_term="Target")

    assert result.status == "found"
    assert result.rejected_hits == 2
    assert result.total == 1
    assert result.records[0].origin == ConnectionOrigin.OTHER


def test_parse_without_hits_block_is_empty():
    assert parse_search_response({}, search_term="Target").status == "empty"


@pytest.mark.parametrize("payload", [[], {"hits": {"total": 0}}, {"hits": []}])
def test_parse_rejects_malformed_payloads(payload):
    with pytest.raises(RelationshipGraphSchemaError):
        parse_search_response(payload, search_term="Target")


def test_unknown_origin_falls_back_to_other():
    payload = {"hits": {"hits": [_hit("p-1", "Ana", 0.5, [{"origin": "conference", "school_name": "MIT"}])]}}

    record = parse_search_response(payload, search_term="Target").records[0]

    assert record.origin == ConnectionOrigin.OTHER
    assert record.organization == "MIT"
