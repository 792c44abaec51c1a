"""ARQ worker entrypoint."""

from arq import cron
from arq.connections import RedisSettings

from modelrouter.core.config import get_settings
from modelrouter.workers.reconcile import reconcile_models


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    settings = get_settings()
    # redis://host:port/db
    url = settings.redis_url
    # Strip scheme
    rest = url.split("://", 1)[1] if "://" in url else url
    host_port, _, db = rest.partition("/")
    host, _, port = host_port.partition(":")
    return RedisSettings(
        host=host or "localhost",
        port=int(port) if port else 6379,
        database=int(db) if db else 0,
    )


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from modelrouter.core.database import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [reconcile_models]
    cron_jobs = [
        # Daily catalog sync; unique=True keeps two workers from firing the same tick
        cron(
            reconcile_models,
            hour={get_settings().reconcile_cron_hour},
            minute={0},
            unique=True,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 10
    job_timeout = 120


if __name__ == "__main__":
    from arq import run_worker
    run_worker(WorkerSettings)  # type: ignore[arg-type]
