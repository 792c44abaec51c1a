"""Reconciliation audit log and the run-level lock row."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from modelrouter.models.base import new_uuid, utcnow


class TriggerSource(StrEnum):
    CRON = "cron"
    MANUAL = "manual"
    API = "api"


class ReconciliationLog(SQLModel, table=True):
    __tablename__ = "reconciliation_logs"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)

    models_found: int = Field(default=0)
    models_added: int = Field(default=0)
    models_updated: int = Field(default=0)
    models_deprecated: int = Field(default=0)
    models_skipped: int = Field(default=0)

    success: bool = Field(default=True, index=True)
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    duration_ms: int = Field(default=0)

    changes: str = Field(default="[]", sa_column=Column(Text, nullable=False))  # JSON array

    triggered_by: str = Field(default=TriggerSource.CRON, max_length=50)
    triggered_by_user: str | None = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


class ReconciliationLock(SQLModel, table=True):
    """At most one row per lock name; inserting it is how a run takes the gate."""

    __tablename__ = "reconciliation_locks"

    name: str = Field(max_length=50, primary_key=True)
    holder: str = Field(max_length=64, nullable=False)
    acquired_at: datetime = Field(default_factory=utcnow, nullable=False)
    expires_at: datetime = Field(nullable=False)
