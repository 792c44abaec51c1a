"""Usage aggregation — fold one completed call into the store.

Three independent writes, each its own transaction:
  1. hourly bucket upsert (INSERT ... ON CONFLICT DO UPDATE)
  2. registry rollup: lifetime counters on success, error streak on failure
  3. experiment rollup when the event names an experiment + variant

Every write is a single statement computed by the database, so concurrent
events for the same bucket or model never race on a read-modify-write.
There is no deduplication key: a redelivered event is counted again.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import case, false, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from modelrouter.core.config import get_settings
from modelrouter.core.errors import STORE_FAILURES, StoreError
from modelrouter.core.pricing import calc_cost
from modelrouter.models.base import new_uuid, utcnow
from modelrouter.models.experiment import Experiment
from modelrouter.models.model_record import ModelRecord
from modelrouter.models.usage_bucket import UsageBucket, UsageEventCreate

logger = logging.getLogger(__name__)

UNKNOWN_MODEL_WARNING = "Model not found in registry - usage tracked without cost"


@dataclass
class UsageOutcome:
    cost_usd: float | None  # None when the model is not in the registry
    known_model: bool
    marked_not_working: bool = False
    failed_writes: list[str] = field(default_factory=list)

    @property
    def warning(self) -> str | None:
        return None if self.known_model else UNKNOWN_MODEL_WARNING


def bucket_hour(ts: datetime) -> datetime:
    """Truncate a timestamp to the top of its hour."""
    return ts.replace(minute=0, second=0, microsecond=0)


async def record_usage(
    session: AsyncSession,
    event: UsageEventCreate,
    now: datetime | None = None,
) -> UsageOutcome:
    """Apply one usage event. Raises StoreError if any of the writes failed."""
    now = now or utcnow()

    try:
        rates = await _lookup_pricing(session, event.model_id)
    except STORE_FAILURES as exc:
        await _rollback(session)
        raise StoreError(f"Pricing lookup failed: {exc}") from exc

    if rates is None:
        logger.warning("Unknown model: %s - cannot track cost", event.model_id)
        outcome = UsageOutcome(cost_usd=None, known_model=False)
    else:
        cost = calc_cost(event.input_tokens, event.output_tokens, *rates)
        outcome = UsageOutcome(cost_usd=cost, known_model=True)

    cost_usd = outcome.cost_usd or 0.0

    await _attempt(session, "bucket", outcome, lambda: merge_bucket(session, event, cost_usd, now))

    if outcome.known_model:
        marked = await _attempt(
            session, "registry", outcome,
            lambda: roll_up_registry(session, event, cost_usd, now),
        )
        outcome.marked_not_working = bool(marked)

    if event.experiment_id is not None and event.experiment_variant is not None:
        await _attempt(
            session, "experiment", outcome,
            lambda: roll_up_experiment(session, event, cost_usd, now),
        )

    if outcome.failed_writes:
        raise StoreError(f"Failed usage writes: {', '.join(outcome.failed_writes)}")
    return outcome


async def _attempt(
    session: AsyncSession,
    name: str,
    outcome: UsageOutcome,
    write: Callable[[], Awaitable[object]],
) -> object | None:
    """Run one write in its own transaction; record failures without stopping."""
    try:
        result = await write()
        await session.commit()
        return result
    except (StoreError, *STORE_FAILURES):
        logger.exception("Usage %s write failed", name)
        await _rollback(session)
        outcome.failed_writes.append(name)
        return None


async def _rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except STORE_FAILURES:
        # Connection already gone; the transaction dies with it
        logger.warning("Rollback after failed usage write also failed")


async def _lookup_pricing(session: AsyncSession, model_id: str) -> tuple[float, float] | None:
    stmt = select(
        ModelRecord.cost_per_million_input_tokens,
        ModelRecord.cost_per_million_output_tokens,
    ).where(ModelRecord.model_id == model_id)
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    return float(row[0] or 0.0), float(row[1] or 0.0)


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise StoreError(f"Upsert not supported on dialect '{dialect}'")


async def merge_bucket(
    session: AsyncSession,
    event: UsageEventCreate,
    cost_usd: float,
    now: datetime,
) -> None:
    """Accumulate the event into its (project, model, hour) bucket."""
    table = UsageBucket.__table__  # type: ignore[attr-defined]
    sample = event.response_time_ms

    stmt = _insert_for(session)(table).values(
        id=new_uuid(),
        model_id=event.model_id,
        project_name=event.project_name,
        endpoint=event.endpoint,
        hour=bucket_hour(now),
        api_calls=1,
        input_tokens=event.input_tokens,
        output_tokens=event.output_tokens,
        total_cost_usd=cost_usd,
        response_time_total_ms=sample or 0,
        response_time_samples=0 if sample is None else 1,
        min_response_time_ms=sample,
        max_response_time_ms=sample,
        error_count=0 if event.success else 1,
        last_error=event.error,
        created_at=now,
        updated_at=now,
    )

    c = table.c
    set_: dict = {
        "api_calls": c.api_calls + 1,
        "input_tokens": c.input_tokens + stmt.excluded.input_tokens,
        "output_tokens": c.output_tokens + stmt.excluded.output_tokens,
        "total_cost_usd": c.total_cost_usd + stmt.excluded.total_cost_usd,
        "error_count": c.error_count + stmt.excluded.error_count,
        "updated_at": stmt.excluded.updated_at,
    }
    if sample is not None:
        set_["response_time_total_ms"] = c.response_time_total_ms + sample
        set_["response_time_samples"] = c.response_time_samples + 1
        set_["min_response_time_ms"] = case(
            (c.min_response_time_ms.is_(None), sample),
            (c.min_response_time_ms > sample, sample),
            else_=c.min_response_time_ms,
        )
        set_["max_response_time_ms"] = case(
            (c.max_response_time_ms.is_(None), sample),
            (c.max_response_time_ms < sample, sample),
            else_=c.max_response_time_ms,
        )
    if event.error is not None:
        set_["last_error"] = stmt.excluded.last_error

    await session.execute(
        stmt.on_conflict_do_update(
            index_elements=["project_name", "model_id", "hour"],
            set_=set_,
        )
    )


async def roll_up_registry(
    session: AsyncSession,
    event: UsageEventCreate,
    cost_usd: float,
    now: datetime,
) -> bool:
    """Update lifetime counters / health. Returns True when this event took the model out."""
    threshold = get_settings().working_error_threshold
    stmt = update(ModelRecord).where(ModelRecord.model_id == event.model_id)

    if event.success:
        await session.execute(
            stmt.values(
                total_api_calls=ModelRecord.total_api_calls + 1,
                total_input_tokens=ModelRecord.total_input_tokens + event.input_tokens,
                total_output_tokens=ModelRecord.total_output_tokens + event.output_tokens,
                total_cost_usd=ModelRecord.total_cost_usd + cost_usd,
                last_used=now,
                error_count=0,
                is_working=True,
                updated_at=now,
            ).execution_options(synchronize_session=False)
        )
        return False

    await session.execute(
        stmt.values(
            error_count=ModelRecord.error_count + 1,
            last_error=event.error or "Unknown error",
            last_error_at=now,
            is_working=case(
                (ModelRecord.error_count + 1 > threshold, false()),
                else_=ModelRecord.is_working,
            ),
            updated_at=now,
        ).execution_options(synchronize_session=False)
    )

    row = (await session.execute(
        select(ModelRecord.error_count, ModelRecord.is_working)
        .where(ModelRecord.model_id == event.model_id)
    )).first()
    # Only the event that crosses the threshold reports the transition
    if row is not None and not row[1] and row[0] == threshold + 1:
        logger.error(
            "Model %s marked as NOT WORKING after %d consecutive errors",
            event.model_id, row[0],
        )
        return True
    return False


async def roll_up_experiment(
    session: AsyncSession,
    event: UsageEventCreate,
    cost_usd: float,
    now: datetime,
) -> None:
    """Add the event to its experiment variant's rolling stats."""
    prefix = event.experiment_variant.value  # type: ignore[union-attr]
    calls = getattr(Experiment, f"{prefix}_calls")
    errors = getattr(Experiment, f"{prefix}_errors")
    cost = getattr(Experiment, f"{prefix}_cost_usd")
    total_ms = getattr(Experiment, f"{prefix}_response_time_total_ms")
    samples = getattr(Experiment, f"{prefix}_response_time_samples")

    values: dict = {
        f"{prefix}_calls": calls + 1,
        f"{prefix}_cost_usd": cost + cost_usd,
        "updated_at": now,
    }
    if not event.success:
        values[f"{prefix}_errors"] = errors + 1
    if event.response_time_ms is not None:
        values[f"{prefix}_response_time_total_ms"] = total_ms + event.response_time_ms
        values[f"{prefix}_response_time_samples"] = samples + 1

    result = await session.execute(
        update(Experiment)
        .where(Experiment.id == event.experiment_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning("Usage event references unknown experiment %s", event.experiment_id)
