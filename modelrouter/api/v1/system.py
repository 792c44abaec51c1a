"""System health endpoint — checks connectivity to the backing services."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func, text
from sqlmodel import select

from modelrouter.api.deps import Session
from modelrouter.core.config import get_settings
from modelrouter.models.model_record import ModelRecord

router = APIRouter(prefix="/system", tags=["system"])

settings = get_settings()


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    version: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: ServiceHealth
    redis: ServiceHealth
    models_count: int | None = None


@router.get("/health", response_model=HealthResponse)
async def system_health(session: Session) -> HealthResponse:
    """Check connectivity to the registry store and the worker queue."""
    db = await _check_database(session)
    rd = await _check_redis()

    models_count = None
    if db.status == "ok":
        models_count = (await session.execute(
            select(func.count()).select_from(ModelRecord)
        )).scalar_one()

    overall = "ok" if all(s.status == "ok" for s in (db, rd)) else "degraded"
    return HealthResponse(status=overall, database=db, redis=rd, models_count=models_count)


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
        return ServiceHealth(status="ok", latency_ms=latency)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_redis() -> ServiceHealth:
    try:
        from redis.asyncio import from_url
        t0 = time.monotonic()
        redis = from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=2)
        pong = await redis.ping()
        latency = int((time.monotonic() - t0) * 1000)
        info = await redis.info("server")
        version = info.get("redis_version")
        await redis.aclose()
        return ServiceHealth(
            status="ok" if pong else "error",
            version=f"Redis {version}" if version else None,
            latency_ms=latency,
        )
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
