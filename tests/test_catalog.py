"""Tests for the upstream catalog client."""

from datetime import datetime

import httpx
import pytest

from modelrouter.core.errors import UpstreamFetchError
from modelrouter.services.catalog import (
    fetch_catalog,
    iter_catalog_pages,
    parse_catalog_item,
)

PAGES = {
    None: {
        "data": [
            {"id": "claude-opus-4-1-20250805", "display_name": "Claude Opus 4.1",
             "created_at": "2025-08-05T00:00:00Z"},
            {"id": "claude-sonnet-4-5-20250929", "display_name": "Claude Sonnet 4.5",
             "created_at": "2025-09-29T00:00:00Z"},
        ],
        "has_more": True,
        "last_id": "claude-sonnet-4-5-20250929",
    },
    "claude-sonnet-4-5-20250929": {
        "data": [
            {"id": "claude-haiku-4-5-20251001", "display_name": "Claude Haiku 4.5",
             "created_at": "2025-10-01T00:00:00Z"},
        ],
        "has_more": False,
        "last_id": "claude-haiku-4-5-20251001",
    },
}


def _paged_client(seen: list) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models"
        after_id = request.url.params.get("after_id")
        seen.append((after_id, request.url.params.get("limit")))
        return httpx.Response(200, json=PAGES[after_id])

    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://catalog.test",
    )


def test_parse_item_normalizes_timestamp():
    item = parse_catalog_item({"id": "claude-x", "created_at": "2025-01-01T12:00:00+02:00"})
    assert item.created_at == datetime(2025, 1, 1, 10, 0, 0)
    assert item.created_at.tzinfo is None
    # Missing display name falls back to the id
    assert item.display_name == "claude-x"


def test_parse_item_rejects_malformed():
    with pytest.raises(UpstreamFetchError):
        parse_catalog_item({"id": "claude-x"})
    with pytest.raises(UpstreamFetchError):
        parse_catalog_item({"id": "claude-x", "created_at": "yesterday"})


@pytest.mark.asyncio
async def test_pages_follow_after_id():
    seen: list = []
    async with _paged_client(seen) as client:
        pages = [page async for page in iter_catalog_pages(client, page_limit=2)]

    assert [len(p) for p in pages] == [2, 1]
    assert [m.id for m in pages[1]] == ["claude-haiku-4-5-20251001"]
    assert seen == [(None, "2"), ("claude-sonnet-4-5-20250929", "2")]


@pytest.mark.asyncio
async def test_sequence_is_reiterable():
    seen: list = []
    async with _paged_client(seen) as client:
        first = [m.id for page in [p async for p in iter_catalog_pages(client)] for m in page]
        second = [m.id for page in [p async for p in iter_catalog_pages(client)] for m in page]
    assert first == second
    assert len(first) == 3


@pytest.mark.asyncio
async def test_http_error_becomes_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "overloaded"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://catalog.test",
    ) as client:
        with pytest.raises(UpstreamFetchError, match="500"):
            async for _ in iter_catalog_pages(client):
                pass


@pytest.mark.asyncio
async def test_missing_data_list_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"models": []})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://catalog.test",
    ) as client:
        with pytest.raises(UpstreamFetchError):
            async for _ in iter_catalog_pages(client):
                pass


@pytest.mark.asyncio
async def test_fetch_requires_api_key(monkeypatch):
    from modelrouter.core.config import get_settings

    monkeypatch.setattr(get_settings(), "catalog_api_key", "")
    with pytest.raises(UpstreamFetchError, match="CATALOG_API_KEY"):
        await fetch_catalog()
