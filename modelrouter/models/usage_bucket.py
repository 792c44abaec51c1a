"""UsageBucket model — hourly usage aggregation per project and model."""

import uuid
from datetime import datetime

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from modelrouter.models.base import TimestampMixin, new_uuid
from modelrouter.models.experiment import ExperimentVariant


class UsageBucket(TimestampMixin, SQLModel, table=True):
    __tablename__ = "usage_buckets"
    __table_args__ = (
        UniqueConstraint("project_name", "model_id", "hour", name="uq_usage_bucket"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)

    # No FK to the registry: events for unknown models are still bucketed
    model_id: str = Field(max_length=100, nullable=False, index=True)
    project_name: str = Field(max_length=100, nullable=False, index=True)
    endpoint: str | None = Field(default=None, max_length=200)
    hour: datetime = Field(nullable=False, index=True)

    api_calls: int = Field(default=0)
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    total_cost_usd: float = Field(default=0.0)

    # Mean is derived on read: total / samples
    response_time_total_ms: int = Field(default=0)
    response_time_samples: int = Field(default=0)
    min_response_time_ms: int | None = Field(default=None)
    max_response_time_ms: int | None = Field(default=None)

    error_count: int = Field(default=0)
    last_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    @property
    def avg_response_time_ms(self) -> float | None:
        if not self.response_time_samples:
            return None
        return self.response_time_total_ms / self.response_time_samples


# ── Pydantic schemas ─────────────────────────────────────────

class UsageEventCreate(SQLModel):
    """One completed model call, reported by a client project."""
    project_name: str = Field(min_length=1, max_length=100)
    model_id: str = Field(min_length=1, max_length=100)
    endpoint: str | None = Field(default=None, max_length=200)
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    response_time_ms: int | None = Field(default=None, ge=0)
    success: bool = True
    error: str | None = None
    experiment_id: uuid.UUID | None = None
    experiment_variant: ExperimentVariant | None = None


class UsageTrackResponse(SQLModel):
    ok: bool
    project_name: str
    model_id: str
    cost_usd: float | None
    total_tokens: int
    warning: str | None = None
