"""ModelRecord — one row per model id ever seen in the upstream catalog."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from modelrouter.models.base import TimestampMixin, new_uuid, utcnow


class ModelCategory(StrEnum):
    HAIKU = "haiku"
    SONNET = "sonnet"
    OPUS = "opus"


class ModelRecord(TimestampMixin, SQLModel, table=True):
    __tablename__ = "model_registry"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)

    # Identity
    model_id: str = Field(max_length=100, unique=True, nullable=False, index=True)
    category: str = Field(max_length=20, nullable=False, index=True)
    model_alias: str | None = Field(default=None, max_length=100)
    display_name: str | None = Field(default=None, max_length=255)

    # Status; at most one is_current row per category
    is_current: bool = Field(default=False)
    is_working: bool = Field(default=True)
    is_deprecated: bool = Field(default=False)
    deprecation_date: datetime | None = Field(default=None)

    # Pricing (USD per 1M tokens)
    cost_per_million_input_tokens: float = Field(default=0.0)
    cost_per_million_output_tokens: float = Field(default=0.0)

    # Lifetime counters (successful calls only)
    total_api_calls: int = Field(default=0)
    total_input_tokens: int = Field(default=0)
    total_output_tokens: int = Field(default=0)
    total_cost_usd: float = Field(default=0.0)

    # Health; error_count is the consecutive-failure streak
    error_count: int = Field(default=0)
    last_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    last_error_at: datetime | None = Field(default=None)

    released_at: datetime | None = Field(default=None)  # upstream created_at
    first_seen: datetime = Field(default_factory=utcnow, nullable=False)
    last_used: datetime | None = Field(default=None)
    last_verified: datetime | None = Field(default=None)
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
