"""Experiment model — A/B split between two model ids for one category."""

import json
import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from modelrouter.models.base import TimestampMixin, new_uuid
from modelrouter.models.model_record import ModelCategory


class ExperimentStatus(StrEnum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class ExperimentVariant(StrEnum):
    MODEL_A = "model_a"
    MODEL_B = "model_b"


# Allowed lifecycle moves: draft → running → paused/completed, paused → running/completed
STATUS_TRANSITIONS: dict[str, set[str]] = {
    ExperimentStatus.DRAFT: {ExperimentStatus.RUNNING},
    ExperimentStatus.RUNNING: {ExperimentStatus.PAUSED, ExperimentStatus.COMPLETED},
    ExperimentStatus.PAUSED: {ExperimentStatus.RUNNING, ExperimentStatus.COMPLETED},
    ExperimentStatus.COMPLETED: set(),
}


class Experiment(TimestampMixin, SQLModel, table=True):
    __tablename__ = "experiments"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=100, unique=True, nullable=False, index=True)
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    category: str = Field(max_length=20, nullable=False, index=True)

    model_a: str = Field(max_length=100, nullable=False)
    model_b: str = Field(max_length=100, nullable=False)
    traffic_split_percent: int = Field(default=50)  # % of traffic to model_a

    # JSON arrays; NULL = unrestricted
    project_names: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    user_roles: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    status: str = Field(default=ExperimentStatus.DRAFT, max_length=20, index=True)
    started_at: datetime | None = Field(default=None)
    ended_at: datetime | None = Field(default=None)

    # Rolling per-variant stats
    model_a_calls: int = Field(default=0)
    model_a_errors: int = Field(default=0)
    model_a_cost_usd: float = Field(default=0.0)
    model_a_response_time_total_ms: int = Field(default=0)
    model_a_response_time_samples: int = Field(default=0)
    model_b_calls: int = Field(default=0)
    model_b_errors: int = Field(default=0)
    model_b_cost_usd: float = Field(default=0.0)
    model_b_response_time_total_ms: int = Field(default=0)
    model_b_response_time_samples: int = Field(default=0)

    winner: str | None = Field(default=None, max_length=10)  # model_a / model_b / tie
    winner_reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    created_by: str | None = Field(default=None, max_length=100)

    @property
    def project_list(self) -> list[str] | None:
        return json.loads(self.project_names) if self.project_names is not None else None

    @property
    def role_list(self) -> list[str] | None:
        return json.loads(self.user_roles) if self.user_roles is not None else None

    def variant_stats(self, variant: str) -> "VariantStats":
        prefix = ExperimentVariant(variant).value
        calls = getattr(self, f"{prefix}_calls")
        errors = getattr(self, f"{prefix}_errors")
        samples = getattr(self, f"{prefix}_response_time_samples")
        total_ms = getattr(self, f"{prefix}_response_time_total_ms")
        return VariantStats(
            model_id=getattr(self, prefix),
            calls=calls,
            cost_usd=getattr(self, f"{prefix}_cost_usd"),
            avg_response_ms=total_ms / samples if samples else None,
            error_rate=round(errors * 100 / calls, 2) if calls else None,
        )


# ── Pydantic schemas ─────────────────────────────────────────

class VariantStats(SQLModel):
    model_id: str
    calls: int
    cost_usd: float
    avg_response_ms: float | None
    error_rate: float | None  # percentage, 0–100


class ExperimentCreate(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    category: ModelCategory
    model_a: str = Field(max_length=100)
    model_b: str = Field(max_length=100)
    traffic_split_percent: int = Field(default=50, ge=0, le=100)
    project_names: list[str] | None = None
    user_roles: list[str] | None = None
    created_by: str | None = Field(default=None, max_length=100)


class ExperimentStatusUpdate(SQLModel):
    status: ExperimentStatus


class ExperimentRead(SQLModel):
    id: uuid.UUID
    name: str
    description: str | None
    category: str
    traffic_split_percent: int
    project_names: list[str] | None
    user_roles: list[str] | None
    status: str
    started_at: datetime | None
    ended_at: datetime | None
    model_a: VariantStats
    model_b: VariantStats
    winner: str | None
    winner_reason: str | None
    created_by: str | None
    created_at: datetime

    @classmethod
    def from_experiment(cls, exp: Experiment) -> "ExperimentRead":
        return cls(
            id=exp.id,
            name=exp.name,
            description=exp.description,
            category=exp.category,
            traffic_split_percent=exp.traffic_split_percent,
            project_names=exp.project_list,
            user_roles=exp.role_list,
            status=exp.status,
            started_at=exp.started_at,
            ended_at=exp.ended_at,
            model_a=exp.variant_stats(ExperimentVariant.MODEL_A),
            model_b=exp.variant_stats(ExperimentVariant.MODEL_B),
            winner=exp.winner,
            winner_reason=exp.winner_reason,
            created_by=exp.created_by,
            created_at=exp.created_at,
        )
