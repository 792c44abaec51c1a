"""Reconciliation run — gate, fetch, plan, apply, log.

Runs from the ARQ cron schedule or the admin trigger. A run always ends with
a ReconciliationLog row and a ReconciliationResult; nothing escapes to the
caller, since the scheduler must not retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from modelrouter.core.config import get_settings
from modelrouter.core.database import async_session_factory
from modelrouter.core.errors import STORE_FAILURES, StoreError, UpstreamFetchError
from modelrouter.models.base import utcnow
from modelrouter.models.model_record import ModelRecord
from modelrouter.models.reconciliation import ReconciliationLock, ReconciliationLog, TriggerSource
from modelrouter.services.catalog import fetch_catalog
from modelrouter.services.reconciler import (
    ReconciliationResult,
    apply_plan,
    plan_reconciliation,
)

logger = logging.getLogger(__name__)

LOCK_NAME = "catalog"


async def run_reconciliation(
    triggered_by: str = TriggerSource.CRON,
    triggered_by_user: str | None = None,
) -> ReconciliationResult:
    """Run one reconciliation end to end. Never raises."""
    settings = get_settings()
    started = time.monotonic()
    holder = uuid.uuid4().hex

    try:
        acquired = await _acquire_lock(holder, settings.reconcile_lock_ttl_seconds)
    except STORE_FAILURES as exc:
        logger.exception("Could not take the reconciliation lock")
        result = ReconciliationResult(success=False, error_message=f"Lock error: {exc}")
    else:
        if acquired:
            try:
                result = await _run_with_budget(settings.reconcile_timeout_seconds)
            finally:
                await _release_lock(holder)
        else:
            logger.warning("Reconciliation skipped: another run holds the lock")
            result = ReconciliationResult(
                success=False, error_message="Reconciliation already in progress",
            )

    result.duration_ms = int((time.monotonic() - started) * 1000)
    result.triggered_by = triggered_by
    await _write_log(result, triggered_by, triggered_by_user)

    if result.success:
        logger.info(
            "Reconciliation done: found=%d added=%d updated=%d deprecated=%d skipped=%d",
            result.models_found,
            result.models_added,
            result.models_updated,
            result.models_deprecated,
            result.models_skipped,
        )
    return result


async def reconcile_models(ctx: dict) -> dict:
    """ARQ cron task: scheduled reconciliation."""
    result = await run_reconciliation(TriggerSource.CRON)
    return result.model_dump()


async def _run_with_budget(timeout_seconds: float) -> ReconciliationResult:
    """Run the reconciliation, folding every failure into a failed result."""
    try:
        async with asyncio.timeout(timeout_seconds):
            return await _reconcile()
    except UpstreamFetchError as exc:
        logger.error("Catalog fetch failed: %s", exc)
        return ReconciliationResult(success=False, error_message=str(exc))
    except StoreError as exc:
        logger.error("Registry write failed: %s", exc)
        return ReconciliationResult(success=False, error_message=str(exc))
    except TimeoutError:
        logger.error("Reconciliation exceeded %.0fs budget", timeout_seconds)
        return ReconciliationResult(
            success=False, error_message=f"Timed out after {timeout_seconds:.0f}s",
        )
    except Exception as exc:
        logger.exception("Reconciliation failed")
        return ReconciliationResult(success=False, error_message=str(exc)[:2000])


async def _reconcile() -> ReconciliationResult:
    # Fetch everything before opening a write transaction
    upstream = await fetch_catalog()

    async with async_session_factory() as session:
        try:
            registry = list((await session.execute(select(ModelRecord))).scalars().all())
            plan = plan_reconciliation(upstream, registry)
            if not plan.is_empty:
                await apply_plan(session, plan, utcnow())
                await session.commit()
        except STORE_FAILURES as exc:
            # Leaving the session block rolls back
            raise StoreError(str(exc)[:2000]) from exc

    return ReconciliationResult(
        success=True,
        models_found=len(upstream),
        models_added=len(plan.to_add),
        models_updated=plan.models_updated,
        models_deprecated=len(plan.to_deprecate),
        models_skipped=len(plan.skipped),
        changes=[change.as_dict() for change in plan.changes],
        skipped_models=plan.skipped,
    )


async def _acquire_lock(holder: str, ttl_seconds: int) -> bool:
    """Insert the lock row; False when another run holds it."""
    now = utcnow()
    async with async_session_factory() as session:
        # A crashed run's lock expires instead of blocking forever
        await session.execute(
            delete(ReconciliationLock).where(
                ReconciliationLock.name == LOCK_NAME,
                ReconciliationLock.expires_at < now,
            )
        )
        session.add(ReconciliationLock(
            name=LOCK_NAME,
            holder=holder,
            acquired_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        ))
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return False
    return True


async def _release_lock(holder: str) -> None:
    try:
        async with async_session_factory() as session:
            await session.execute(
                delete(ReconciliationLock).where(
                    ReconciliationLock.name == LOCK_NAME,
                    ReconciliationLock.holder == holder,
                )
            )
            await session.commit()
    except STORE_FAILURES:
        logger.exception("Failed to release reconciliation lock %s", holder)


async def _write_log(
    result: ReconciliationResult,
    triggered_by: str,
    triggered_by_user: str | None,
) -> None:
    try:
        async with async_session_factory() as session:
            session.add(ReconciliationLog(
                models_found=result.models_found,
                models_added=result.models_added,
                models_updated=result.models_updated,
                models_deprecated=result.models_deprecated,
                models_skipped=result.models_skipped,
                success=result.success,
                error_message=result.error_message,
                duration_ms=result.duration_ms,
                changes=json.dumps(result.changes, default=str),
                triggered_by=triggered_by,
                triggered_by_user=triggered_by_user,
            ))
            await session.commit()
    except STORE_FAILURES:
        logger.exception("Failed to write reconciliation log")
