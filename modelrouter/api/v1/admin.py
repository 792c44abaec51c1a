"""Operator endpoints — manual reconciliation, overrides and experiments."""

import json
import uuid

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field
from sqlmodel import select

from modelrouter.api.deps import AdminAuth, Session
from modelrouter.models.base import to_naive_utc, utcnow
from modelrouter.models.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentRead,
    ExperimentStatusUpdate,
)
from modelrouter.models.model_record import ModelRecord
from modelrouter.models.override import Override, OverrideCreate, OverrideRead
from modelrouter.models.reconciliation import TriggerSource
from modelrouter.services.experiments import InvalidTransition, transition
from modelrouter.services.reconciler import ReconciliationResult
from modelrouter.workers.reconcile import run_reconciliation

router = APIRouter(prefix="/admin", tags=["admin"])


class ReconcileRequest(BaseModel):
    requested_by: str | None = Field(default=None, max_length=100)


# ── Helpers ───────────────────────────────────────────────────

async def _require_known_models(
    session: Session,
    *model_ids: str,
    category: str | None = None,
) -> None:
    """400 unless every id is registered, and in ``category`` when one is given."""
    stmt = select(ModelRecord.model_id, ModelRecord.category).where(
        ModelRecord.model_id.in_(model_ids)  # type: ignore[attr-defined]
    )
    known = dict((await session.execute(stmt)).all())
    unknown = sorted(set(model_ids) - known.keys())
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown model id(s): {', '.join(unknown)}",
        )
    if category is not None:
        foreign = sorted(mid for mid in set(model_ids) if known[mid] != category)
        if foreign:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Model id(s) not in category '{category}': {', '.join(foreign)}",
            )


async def _get_experiment(session: Session, experiment_id: uuid.UUID) -> Experiment:
    exp = await session.get(Experiment, experiment_id, populate_existing=True)
    if exp is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Experiment not found")
    return exp


# ── Reconciliation ────────────────────────────────────────────

@router.post(
    "/reconcile",
    response_model=ReconciliationResult,
    summary="Run catalog reconciliation now",
)
async def trigger_reconciliation(
    auth: AdminAuth,
    body: ReconcileRequest | None = None,
) -> ReconciliationResult:
    """Runs synchronously and always answers 200; check ``success`` in the body."""
    return await run_reconciliation(
        triggered_by=TriggerSource.MANUAL,
        triggered_by_user=body.requested_by if body else None,
    )


# ── Overrides ─────────────────────────────────────────────────

@router.post(
    "/overrides",
    response_model=OverrideRead,
    status_code=status.HTTP_201_CREATED,
    summary="Pin a category (optionally per project) to a model id",
)
async def create_override(
    body: OverrideCreate,
    auth: AdminAuth,
    session: Session,
) -> OverrideRead:
    await _require_known_models(session, body.override_model_id)

    override = Override(
        project_name=body.project_name,
        category=body.category.value,
        override_model_id=body.override_model_id,
        reason=body.reason,
        expires_at=to_naive_utc(body.expires_at) if body.expires_at else None,
        created_by=body.created_by,
    )
    session.add(override)
    await session.commit()
    await session.refresh(override)
    return OverrideRead.model_validate(override)


@router.get(
    "/overrides",
    response_model=list[OverrideRead],
    summary="List overrides that are still in effect",
)
async def list_overrides(
    auth: AdminAuth,
    session: Session,
    include_expired: bool = False,
) -> list[OverrideRead]:
    stmt = select(Override).order_by(Override.created_at.desc())  # type: ignore[union-attr]
    overrides = (await session.execute(stmt)).scalars().all()
    now = utcnow()
    return [
        OverrideRead.model_validate(o)
        for o in overrides
        if include_expired or o.is_active(now)
    ]


@router.delete(
    "/overrides/{override_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Expire an override",
)
async def expire_override(
    override_id: uuid.UUID,
    auth: AdminAuth,
    session: Session,
) -> None:
    """Sets expires_at to now; the row stays for the audit trail."""
    override = await session.get(Override, override_id)
    if override is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Override not found")

    now = utcnow()
    if override.is_active(now):
        override.expires_at = now
        session.add(override)
        await session.commit()


# ── Experiments ───────────────────────────────────────────────

@router.post(
    "/experiments",
    response_model=ExperimentRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft A/B experiment",
)
async def create_experiment(
    body: ExperimentCreate,
    auth: AdminAuth,
    session: Session,
) -> ExperimentRead:
    existing = await session.execute(select(Experiment).where(Experiment.name == body.name))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Experiment '{body.name}' already exists",
        )
    await _require_known_models(session, body.model_a, body.model_b, category=body.category.value)

    exp = Experiment(
        name=body.name,
        description=body.description,
        category=body.category.value,
        model_a=body.model_a,
        model_b=body.model_b,
        traffic_split_percent=body.traffic_split_percent,
        project_names=json.dumps(body.project_names) if body.project_names is not None else None,
        user_roles=json.dumps(body.user_roles) if body.user_roles is not None else None,
        created_by=body.created_by,
    )
    session.add(exp)
    await session.commit()
    await session.refresh(exp)
    return ExperimentRead.from_experiment(exp)


@router.get(
    "/experiments",
    response_model=list[ExperimentRead],
    summary="List experiments with their rolling stats",
)
async def list_experiments(
    auth: AdminAuth,
    session: Session,
    status_filter: str | None = None,
) -> list[ExperimentRead]:
    stmt = select(Experiment).order_by(Experiment.created_at.desc())  # type: ignore[union-attr]
    if status_filter:
        stmt = stmt.where(Experiment.status == status_filter)
    experiments = (await session.execute(stmt)).scalars().all()
    return [ExperimentRead.from_experiment(e) for e in experiments]


@router.get(
    "/experiments/{experiment_id}",
    response_model=ExperimentRead,
    summary="Get one experiment",
)
async def get_experiment(
    experiment_id: uuid.UUID,
    auth: AdminAuth,
    session: Session,
) -> ExperimentRead:
    return ExperimentRead.from_experiment(await _get_experiment(session, experiment_id))


@router.post(
    "/experiments/{experiment_id}/status",
    response_model=ExperimentRead,
    summary="Start, pause, resume or complete an experiment",
)
async def update_experiment_status(
    experiment_id: uuid.UUID,
    body: ExperimentStatusUpdate,
    auth: AdminAuth,
    session: Session,
) -> ExperimentRead:
    exp = await _get_experiment(session, experiment_id)
    try:
        transition(exp, body.status, utcnow())
    except InvalidTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    session.add(exp)
    await session.commit()
    await session.refresh(exp)
    return ExperimentRead.from_experiment(exp)
