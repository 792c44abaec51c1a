"""Catalog reconciliation — diff the upstream catalog against the registry.

Flow:
  1. Plan (pure): new ids, missing ids, reinstated ids, per-category current pick
  2. Apply: inserts, deprecations and current-flag transitions on one session
     (the caller commits, so the whole plan lands as one transaction)

Planning never touches the store, so every rule here is testable with plain
objects.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from modelrouter.core.errors import UnresolvableItemError
from modelrouter.core.pricing import get_pricing
from modelrouter.models.model_record import ModelCategory, ModelRecord
from modelrouter.services.catalog import CatalogModel

logger = logging.getLogger(__name__)

# Substring keywords, checked in this order
CATEGORY_KEYWORDS: tuple[ModelCategory, ...] = (
    ModelCategory.HAIKU,
    ModelCategory.SONNET,
    ModelCategory.OPUS,
)


def resolve_category(model_id: str) -> ModelCategory:
    """Map a model id to its category by case-insensitive keyword match."""
    lowered = model_id.lower()
    for category in CATEGORY_KEYWORDS:
        if category.value in lowered:
            return category
    raise UnresolvableItemError(model_id)


def select_current_models(upstream: Iterable[CatalogModel]) -> dict[str, CatalogModel]:
    """Pick the newest upstream model per category.

    Newest means greatest ``created_at``; equal timestamps fall back to the
    lexicographically greatest id so the pick is reproducible.
    """
    newest: dict[str, CatalogModel] = {}
    for item in upstream:
        try:
            category = resolve_category(item.id)
        except UnresolvableItemError:
            continue
        best = newest.get(category.value)
        if best is None or (item.created_at, item.id) > (best.created_at, best.id):
            newest[category.value] = item
    return newest


@dataclass
class Change:
    type: str  # model_added / model_deprecated / model_reinstated / current_model_changed
    model_id: str
    details: dict | None = None

    def as_dict(self) -> dict:
        data: dict = {"type": self.type, "model_id": self.model_id}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class CurrentTransition:
    category: str
    model_id: str
    previous: str | None


@dataclass
class ReconciliationPlan:
    """Everything one run will write, computed before any write happens."""
    to_add: list[tuple[CatalogModel, ModelCategory]] = field(default_factory=list)
    to_deprecate: list[str] = field(default_factory=list)
    to_reinstate: list[str] = field(default_factory=list)
    transitions: list[CurrentTransition] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    changes: list[Change] = field(default_factory=list)

    @property
    def models_updated(self) -> int:
        return len(self.transitions) + len(self.to_reinstate)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_deprecate or self.to_reinstate or self.transitions)


class ReconciliationResult(BaseModel):
    """Terminal payload of a run; returned to the trigger and mirrored in the log."""
    success: bool
    models_found: int = 0
    models_added: int = 0
    models_updated: int = 0
    models_deprecated: int = 0
    models_skipped: int = 0
    changes: list[dict] = []
    skipped_models: list[str] = []
    error_message: str | None = None
    duration_ms: int = 0
    triggered_by: str = "cron"


def plan_reconciliation(
    upstream: Sequence[CatalogModel],
    registry: Sequence[ModelRecord],
) -> ReconciliationPlan:
    """Diff an upstream snapshot against a registry snapshot."""
    plan = ReconciliationPlan()

    # Duplicate ids in the listing collapse to their first occurrence
    upstream_by_id: dict[str, CatalogModel] = {}
    for item in upstream:
        upstream_by_id.setdefault(item.id, item)
    registry_by_id = {rec.model_id: rec for rec in registry}

    # 1. New ids
    for model_id, item in upstream_by_id.items():
        if model_id in registry_by_id:
            continue
        try:
            category = resolve_category(model_id)
        except UnresolvableItemError:
            logger.warning("Could not parse category for model: %s", model_id)
            plan.skipped.append(model_id)
            continue
        plan.to_add.append((item, category))
        plan.changes.append(Change(
            type="model_added",
            model_id=model_id,
            details={"display_name": item.display_name, "category": category.value},
        ))

    # 2. Missing ids (and ids that came back after being deprecated)
    for model_id, rec in registry_by_id.items():
        if model_id not in upstream_by_id:
            if not rec.is_deprecated:
                plan.to_deprecate.append(model_id)
                plan.changes.append(Change(type="model_deprecated", model_id=model_id))
        elif rec.is_deprecated:
            plan.to_reinstate.append(model_id)
            plan.changes.append(Change(type="model_reinstated", model_id=model_id))

    # 3. Current arbitration: transition unless the category's current set is exactly {newest}
    for category, newest in sorted(select_current_models(upstream_by_id.values()).items()):
        current_ids = sorted(
            rec.model_id
            for rec in registry
            if rec.category == category and rec.is_current
        )
        if current_ids == [newest.id]:
            continue
        previous = current_ids[0] if current_ids else None
        plan.transitions.append(
            CurrentTransition(category=category, model_id=newest.id, previous=previous)
        )
        plan.changes.append(Change(
            type="current_model_changed",
            model_id=newest.id,
            details={"category": category, "previous": previous},
        ))

    return plan


async def apply_plan(session: AsyncSession, plan: ReconciliationPlan, now: datetime) -> None:
    """Stage every write of the plan on ``session``. The caller commits."""
    for item, category in plan.to_add:
        input_rate, output_rate = get_pricing(item.id)
        session.add(ModelRecord(
            model_id=item.id,
            category=category.value,
            display_name=item.display_name,
            is_current=False,
            is_working=True,
            cost_per_million_input_tokens=input_rate,
            cost_per_million_output_tokens=output_rate,
            released_at=item.created_at,
            first_seen=now,
            last_verified=now,
        ))
        logger.info("Adding new model: %s (%s)", item.id, category)

    if plan.to_deprecate:
        await session.execute(
            update(ModelRecord)
            .where(ModelRecord.model_id.in_(plan.to_deprecate))  # type: ignore[attr-defined]
            .values(is_deprecated=True, deprecation_date=now, is_current=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info("Deprecated models: %s", ", ".join(plan.to_deprecate))

    if plan.to_reinstate:
        await session.execute(
            update(ModelRecord)
            .where(ModelRecord.model_id.in_(plan.to_reinstate))  # type: ignore[attr-defined]
            .values(is_deprecated=False, deprecation_date=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info("Reinstated models: %s", ", ".join(plan.to_reinstate))

    # New rows must exist before the current flag can be pointed at them
    await session.flush()

    for transition in plan.transitions:
        await session.execute(
            update(ModelRecord)
            .where(ModelRecord.category == transition.category)
            .values(is_current=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(ModelRecord)
            .where(ModelRecord.model_id == transition.model_id)
            .values(is_current=True, last_verified=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Set current model for %s: %s (was %s)",
            transition.category, transition.model_id, transition.previous,
        )
