"""Tests for the liveness and system health endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from modelrouter.api.v1.system import ServiceHealth
from modelrouter.models.model_record import ModelRecord


@pytest.mark.asyncio
async def test_liveness(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_system_health_reports_registry_size(client: AsyncClient, session):
    session.add(ModelRecord(model_id="claude-haiku-4-5", category="haiku"))
    await session.commit()

    redis_ok = AsyncMock(return_value=ServiceHealth(status="ok", version="Redis 7.2.4"))
    with patch("modelrouter.api.v1.system._check_redis", redis_ok):
        resp = await client.get("/v1/system/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["database"]["status"] == "ok"
    assert data["redis"]["version"] == "Redis 7.2.4"
    assert data["models_count"] == 1


@pytest.mark.asyncio
async def test_system_health_degrades_when_redis_down(client: AsyncClient):
    redis_down = AsyncMock(return_value=ServiceHealth(status="error", detail="Connection refused"))
    with patch("modelrouter.api.v1.system._check_redis", redis_down):
        resp = await client.get("/v1/system/health")

    data = resp.json()
    assert data["status"] == "degraded"
    assert data["database"]["status"] == "ok"
    assert data["redis"]["status"] == "error"
    assert data["models_count"] == 0
