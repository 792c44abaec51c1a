"""Tests for the resolution cascade."""

import json
import random
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from modelrouter.models.experiment import Experiment, ExperimentStatus, ExperimentVariant
from modelrouter.models.model_record import ModelCategory, ModelRecord
from modelrouter.models.override import Override
from modelrouter.services.resolution import (
    EMERGENCY_MODELS,
    ResolutionContext,
    choose_variant,
    experiment_targets,
    resolve,
    resolve_model,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)


def _ctx(**kwargs) -> ResolutionContext:
    defaults = {"category": "sonnet", "project": None, "role": "guest", "now": NOW}
    defaults.update(kwargs)
    return ResolutionContext(**defaults)


def _override(model_id: str, project: str | None = None, **kwargs) -> Override:
    return Override(
        project_name=project,
        category=kwargs.pop("category", "sonnet"),
        override_model_id=model_id,
        reason="pinned for testing",
        created_by="ops",
        created_at=kwargs.pop("created_at", NOW - timedelta(hours=1)),
        **kwargs,
    )


def _model(model_id: str, **kwargs) -> ModelRecord:
    return ModelRecord(model_id=model_id, category=kwargs.pop("category", "sonnet"), **kwargs)


def _experiment(split: int = 50, **kwargs) -> Experiment:
    projects = kwargs.pop("project_names", None)
    roles = kwargs.pop("user_roles", None)
    return Experiment(
        name=kwargs.pop("name", "sonnet-bakeoff"),
        category="sonnet",
        model_a="claude-sonnet-4-5",
        model_b="claude-sonnet-4",
        traffic_split_percent=split,
        status=kwargs.pop("status", ExperimentStatus.RUNNING),
        project_names=json.dumps(projects) if projects is not None else None,
        user_roles=json.dumps(roles) if roles is not None else None,
        created_at=kwargs.pop("created_at", NOW - timedelta(days=1)),
        **kwargs,
    )


# ── Overrides ────────────────────────────────────────────────

def test_project_override_beats_global():
    ctx = _ctx(
        project="billing",
        overrides=[_override("claude-global"), _override("claude-billing", project="billing")],
    )
    res = resolve(ctx)
    assert res.model_id == "claude-billing"
    assert res.provenance == "project_override"
    assert res.project == "billing"


def test_global_override_applies_without_project():
    ctx = _ctx(overrides=[_override("claude-global"), _override("claude-billing", project="billing")])
    res = resolve(ctx)
    assert res.model_id == "claude-global"
    assert res.provenance == "global_override"


def test_other_project_override_is_ignored():
    ctx = _ctx(
        project="search",
        overrides=[_override("claude-billing", project="billing")],
        models=[_model("claude-sonnet-4-5", is_current=True)],
    )
    assert resolve(ctx).provenance == "current"


def test_expired_override_is_ignored():
    ctx = _ctx(
        overrides=[_override("claude-global", expires_at=NOW - timedelta(seconds=1))],
        models=[_model("claude-sonnet-4-5", is_current=True)],
    )
    assert resolve(ctx).model_id == "claude-sonnet-4-5"


def test_newest_override_wins():
    ctx = _ctx(overrides=[
        _override("claude-older", created_at=NOW - timedelta(days=2)),
        _override("claude-newer", created_at=NOW - timedelta(days=1)),
    ])
    assert resolve(ctx).model_id == "claude-newer"


def test_override_beats_experiment():
    ctx = _ctx(overrides=[_override("claude-global")], experiments=[_experiment()])
    assert resolve(ctx).provenance == "global_override"


# ── Experiments ──────────────────────────────────────────────

def test_split_converges():
    rng = random.Random(42)
    draws = [choose_variant(70, rng) for _ in range(10_000)]
    share_a = draws.count(ExperimentVariant.MODEL_A) / len(draws)
    assert share_a == pytest.approx(0.70, abs=0.02)


def test_split_extremes_are_deterministic():
    rng = random.Random(7)
    assert all(choose_variant(100, rng) == ExperimentVariant.MODEL_A for _ in range(500))
    assert all(choose_variant(0, rng) == ExperimentVariant.MODEL_B for _ in range(500))


def test_experiment_targeting():
    open_exp = _experiment()
    assert experiment_targets(open_exp, None, "guest")

    scoped = _experiment(project_names=["billing"], user_roles=["admin"])
    assert experiment_targets(scoped, "billing", "admin")
    assert not experiment_targets(scoped, "billing", "guest")
    assert not experiment_targets(scoped, "search", "admin")
    # A caller without a project only matches unrestricted project sets
    assert not experiment_targets(scoped, None, "admin")


def test_running_experiment_assigns_variant():
    exp = _experiment(split=100)
    ctx = _ctx(
        project="billing",
        experiments=[exp],
        models=[_model("claude-sonnet-4", is_current=True)],
        rng=random.Random(0),
    )
    res = resolve(ctx)
    assert res.provenance == "ab_test"
    assert res.is_ab_test is True
    assert res.model_id == "claude-sonnet-4-5"
    assert res.experiment_variant == "model_a"
    assert res.experiment_id == str(exp.id)
    assert res.experiment_name == "sonnet-bakeoff"


def test_paused_experiment_is_ignored():
    ctx = _ctx(
        experiments=[_experiment(status=ExperimentStatus.PAUSED)],
        models=[_model("claude-sonnet-4", is_current=True)],
    )
    assert resolve(ctx).provenance == "current"


def test_role_outside_experiment_falls_through():
    ctx = _ctx(
        role="guest",
        experiments=[_experiment(user_roles=["beta"])],
        models=[_model("claude-sonnet-4", is_current=True)],
    )
    assert resolve(ctx).model_id == "claude-sonnet-4"


# ── Registry stages ──────────────────────────────────────────

def test_current_includes_fallback_candidate():
    verified = NOW - timedelta(hours=2)
    ctx = _ctx(models=[
        _model("claude-sonnet-4-5", is_current=True, last_verified=verified),
        _model("claude-sonnet-4", last_verified=NOW - timedelta(hours=1)),
    ])
    res = resolve(ctx)
    assert res.provenance == "current"
    assert res.model_id == "claude-sonnet-4-5"
    assert res.fallback_model == "claude-sonnet-4"
    assert res.last_verified == verified


def test_fallback_picks_most_recently_verified_working_model():
    ctx = _ctx(models=[
        _model("claude-sonnet-old", last_verified=NOW - timedelta(days=30)),
        _model("claude-sonnet-new", last_verified=NOW - timedelta(days=1)),
        _model("claude-sonnet-broken", is_working=False, last_verified=NOW),
        _model("claude-sonnet-never"),
    ])
    res = resolve(ctx)
    assert res.provenance == "fallback"
    assert res.model_id == "claude-sonnet-new"
    assert res.warning


def test_empty_registry_gives_emergency():
    res = resolve(_ctx(category="haiku"))
    assert res.provenance == "emergency"
    assert res.model_id == "claude-haiku-4-5"
    assert res.error is None


# ── resolve_model against the store ──────────────────────────

@pytest.mark.asyncio
async def test_resolve_model_reads_store(session):
    session.add(_model("claude-opus-4-1", category="opus", is_current=True))
    session.add(_model("claude-3-opus", category="opus", is_deprecated=True, is_current=True))
    await session.commit()

    res = await resolve_model(session, ModelCategory.OPUS)
    assert res.model_id == "claude-opus-4-1"
    assert res.category == "opus"


@pytest.mark.asyncio
async def test_store_failure_gives_emergency():
    broken = AsyncMock()
    broken.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
    broken.rollback = AsyncMock()

    res = await resolve_model(broken, ModelCategory.SONNET)
    assert res.provenance == "emergency"
    assert res.model_id == EMERGENCY_MODELS[ModelCategory.SONNET]
    assert "db down" in res.error
