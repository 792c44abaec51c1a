"""FastAPI application entrypoint."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from modelrouter.api.v1 import v1_router
from modelrouter.core.database import init_db


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: ensure tables exist
    await init_db()
    yield


app = FastAPI(
    title="ModelRouter",
    version="0.1.0",
    description="Model registry, resolution and usage aggregation service",
    lifespan=lifespan,
)

# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
