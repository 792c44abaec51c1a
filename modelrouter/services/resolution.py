"""Model resolution — pick a model id for (category, project, role).

The cascade is an ordered tuple of pure stage functions. Each stage looks at
an explicit ``ResolutionContext`` snapshot and either returns a
``Resolution`` or ``None`` to defer to the next stage:

  1. project override
  2. global override
  3. running experiment (A/B draw)
  4. current registry model
  5. most recently verified working model
  6. built-in emergency mapping

``resolve_model`` loads the snapshots from the store and degrades to the
emergency mapping on any failure; resolution never errors for a valid
category.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from modelrouter.models.base import utcnow
from modelrouter.models.experiment import Experiment, ExperimentStatus, ExperimentVariant
from modelrouter.models.model_record import ModelCategory, ModelRecord
from modelrouter.models.override import Override

logger = logging.getLogger(__name__)

EMERGENCY_MODELS: dict[str, str] = {
    ModelCategory.HAIKU: "claude-haiku-4-5",
    ModelCategory.SONNET: "claude-sonnet-4-5",
    ModelCategory.OPUS: "claude-opus-4-1",
}


class Resolution(BaseModel):
    model_id: str
    category: str
    provenance: str  # project_override / global_override / ab_test / current / fallback / emergency
    is_ab_test: bool = False
    project: str | None = None
    experiment_id: str | None = None
    experiment_name: str | None = None
    experiment_variant: str | None = None
    fallback_model: str | None = None
    last_verified: datetime | None = None
    warning: str | None = None
    error: str | None = None


@dataclass
class ResolutionContext:
    category: str
    project: str | None
    role: str
    now: datetime
    overrides: Sequence[Override] = ()
    experiments: Sequence[Experiment] = ()
    models: Sequence[ModelRecord] = ()
    rng: random.Random = field(default_factory=random.Random)


Stage = Callable[[ResolutionContext], Resolution | None]


def _newest_override(ctx: ResolutionContext, project: str | None) -> Override | None:
    candidates = [
        o for o in ctx.overrides
        if o.category == ctx.category
        and o.project_name == project
        and o.is_active(ctx.now)
    ]
    return max(candidates, key=lambda o: o.created_at, default=None)


def project_override_stage(ctx: ResolutionContext) -> Resolution | None:
    if not ctx.project:
        return None
    override = _newest_override(ctx, ctx.project)
    if override is None:
        return None
    return Resolution(
        model_id=override.override_model_id,
        category=ctx.category,
        provenance="project_override",
        project=ctx.project,
    )


def global_override_stage(ctx: ResolutionContext) -> Resolution | None:
    override = _newest_override(ctx, None)
    if override is None:
        return None
    return Resolution(
        model_id=override.override_model_id,
        category=ctx.category,
        provenance="global_override",
    )


def experiment_targets(exp: Experiment, project: str | None, role: str) -> bool:
    """True when the experiment's project and role sets admit this caller."""
    projects = exp.project_list
    if projects is not None and project not in projects:
        return False
    roles = exp.role_list
    return roles is None or role in roles


def choose_variant(split_percent: int, rng: random.Random) -> ExperimentVariant:
    """One uniform draw in [0, 100): below the split picks model_a."""
    if rng.random() * 100 < split_percent:
        return ExperimentVariant.MODEL_A
    return ExperimentVariant.MODEL_B


def experiment_stage(ctx: ResolutionContext) -> Resolution | None:
    running = [
        e for e in ctx.experiments
        if e.status == ExperimentStatus.RUNNING
        and e.category == ctx.category
        and experiment_targets(e, ctx.project, ctx.role)
    ]
    exp = max(running, key=lambda e: e.created_at, default=None)
    if exp is None:
        return None

    variant = choose_variant(exp.traffic_split_percent, ctx.rng)
    return Resolution(
        model_id=exp.model_a if variant == ExperimentVariant.MODEL_A else exp.model_b,
        category=ctx.category,
        provenance="ab_test",
        is_ab_test=True,
        project=ctx.project,
        experiment_id=str(exp.id),
        experiment_name=exp.name,
        experiment_variant=variant.value,
    )


def _best_working(ctx: ResolutionContext) -> ModelRecord | None:
    working = [
        m for m in ctx.models
        if m.category == ctx.category and m.is_working and not m.is_deprecated
    ]
    # Most recently verified first; never-verified rows sort last
    return max(
        working,
        key=lambda m: (m.last_verified is not None, m.last_verified or datetime.min),
        default=None,
    )


def current_stage(ctx: ResolutionContext) -> Resolution | None:
    current = [
        m for m in ctx.models
        if m.category == ctx.category and m.is_current and not m.is_deprecated
    ]
    if not current:
        return None
    model = max(
        current,
        key=lambda m: (m.last_verified is not None, m.last_verified or datetime.min),
    )
    fallback = _best_working(ctx)
    return Resolution(
        model_id=model.model_id,
        category=ctx.category,
        provenance="current",
        fallback_model=fallback.model_id if fallback else None,
        last_verified=model.last_verified,
    )


def fallback_stage(ctx: ResolutionContext) -> Resolution | None:
    model = _best_working(ctx)
    if model is None:
        return None
    return Resolution(
        model_id=model.model_id,
        category=ctx.category,
        provenance="fallback",
        last_verified=model.last_verified,
        warning="Using fallback model - current model unavailable",
    )


def emergency_resolution(category: str, error: str | None = None) -> Resolution:
    return Resolution(
        model_id=EMERGENCY_MODELS[category],
        category=category,
        provenance="emergency",
        warning=(
            "Emergency fallback due to error" if error
            else "Emergency fallback - no models found in registry"
        ),
        error=error,
    )


CASCADE: tuple[Stage, ...] = (
    project_override_stage,
    global_override_stage,
    experiment_stage,
    current_stage,
    fallback_stage,
)


def resolve(ctx: ResolutionContext) -> Resolution:
    """Walk the cascade; the first stage with an answer wins."""
    for stage in CASCADE:
        resolution = stage(ctx)
        if resolution is not None:
            return resolution
    logger.error("No model found in registry - using emergency fallback for %s", ctx.category)
    return emergency_resolution(ctx.category)


async def load_context(
    session: AsyncSession,
    category: str,
    project: str | None,
    role: str,
    now: datetime,
) -> ResolutionContext:
    """Read the snapshots the cascade needs for one category."""
    override_stmt = select(Override).where(
        Override.category == category,
        or_(Override.expires_at.is_(None), Override.expires_at > now),  # type: ignore[union-attr]
    )
    if project:
        override_stmt = override_stmt.where(
            or_(Override.project_name.is_(None), Override.project_name == project)  # type: ignore[union-attr]
        )
    else:
        override_stmt = override_stmt.where(Override.project_name.is_(None))  # type: ignore[union-attr]

    experiment_stmt = select(Experiment).where(
        Experiment.category == category,
        Experiment.status == ExperimentStatus.RUNNING,
    )
    model_stmt = select(ModelRecord).where(
        ModelRecord.category == category,
        ModelRecord.is_deprecated == False,  # noqa: E712
    )

    # Snapshots must reflect rows other writers touched with bulk updates
    fresh = {"populate_existing": True}
    overrides = (await session.execute(override_stmt, execution_options=fresh)).scalars().all()
    experiments = (await session.execute(experiment_stmt, execution_options=fresh)).scalars().all()
    models = (await session.execute(model_stmt, execution_options=fresh)).scalars().all()

    return ResolutionContext(
        category=category,
        project=project,
        role=role,
        now=now,
        overrides=list(overrides),
        experiments=list(experiments),
        models=list(models),
    )


async def resolve_model(
    session: AsyncSession,
    category: ModelCategory,
    project: str | None = None,
    role: str | None = None,
    default_role: str = "guest",
) -> Resolution:
    """Resolve a model id for a validated category. Never raises."""
    try:
        category = ModelCategory(category).value
        ctx = await load_context(session, category, project, role or default_role, utcnow())
        return resolve(ctx)
    except Exception as exc:
        logger.exception("Resolution failed for %s - using emergency fallback", category)
        try:
            await session.rollback()
        except Exception:
            logger.warning("Rollback after failed resolution also failed")
        return emergency_resolution(category, error=str(exc)[:500])
