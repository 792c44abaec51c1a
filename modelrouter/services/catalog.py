"""Upstream catalog client — pages through the provider's model listing."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime

import httpx

from modelrouter.core.config import get_settings
from modelrouter.core.errors import UpstreamFetchError
from modelrouter.models.base import to_naive_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogModel:
    """One entry of the upstream listing."""
    id: str
    display_name: str
    created_at: datetime  # naive UTC


def parse_catalog_item(item: dict) -> CatalogModel:
    """Turn one raw listing entry into a CatalogModel. Raises UpstreamFetchError."""
    try:
        created_at = datetime.fromisoformat(item["created_at"])
        return CatalogModel(
            id=item["id"],
            display_name=item.get("display_name") or item["id"],
            created_at=to_naive_utc(created_at),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamFetchError(f"Malformed catalog entry: {item!r}") from exc


async def iter_catalog_pages(
    client: httpx.AsyncClient,
    page_limit: int | None = None,
) -> AsyncIterator[list[CatalogModel]]:
    """Yield the catalog one page at a time, following ``after_id`` until exhausted.

    Each call starts again from the first page, so the sequence can be
    re-iterated by calling this function again.
    """
    settings = get_settings()
    limit = page_limit or settings.catalog_page_limit
    after_id: str | None = None

    while True:
        params: dict[str, str | int] = {"limit": limit}
        if after_id:
            params["after_id"] = after_id

        try:
            resp = await client.get("/v1/models", params=params)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamFetchError(
                f"Catalog API error: {exc.response.status_code} {exc.response.reason_phrase}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamFetchError(f"Catalog request failed: {exc}") from exc

        items = payload.get("data")
        if not isinstance(items, list):
            raise UpstreamFetchError("Catalog response has no 'data' list")

        yield [parse_catalog_item(item) for item in items]

        after_id = payload.get("last_id")
        if not payload.get("has_more") or not after_id:
            return


def build_catalog_client() -> httpx.AsyncClient:
    settings = get_settings()
    if not settings.catalog_api_key:
        raise UpstreamFetchError("CATALOG_API_KEY is not configured")
    return httpx.AsyncClient(
        base_url=settings.catalog_base_url,
        timeout=settings.catalog_timeout_seconds,
        headers={
            "x-api-key": settings.catalog_api_key,
            "anthropic-version": settings.catalog_api_version,
            "Content-Type": "application/json",
        },
    )


async def fetch_catalog() -> list[CatalogModel]:
    """Fetch the full upstream catalog. Raises UpstreamFetchError."""
    models: list[CatalogModel] = []
    async with build_catalog_client() as client:
        async for page in iter_catalog_pages(client):
            models.extend(page)
    logger.info("Fetched %d models from upstream catalog", len(models))
    return models
