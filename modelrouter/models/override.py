"""Override model — manual operator pin of a category to a model id."""

import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from modelrouter.models.base import new_uuid, utcnow
from modelrouter.models.model_record import ModelCategory


class Override(SQLModel, table=True):
    __tablename__ = "model_overrides"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)

    # NULL project_name = applies to every project
    project_name: str | None = Field(default=None, max_length=100, index=True)
    category: str = Field(max_length=20, nullable=False, index=True)

    override_model_id: str = Field(max_length=100, nullable=False)
    reason: str = Field(sa_column=Column(Text, nullable=False))
    expires_at: datetime | None = Field(default=None, index=True)

    created_by: str = Field(max_length=100, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


# ── Pydantic schemas ─────────────────────────────────────────

class OverrideCreate(SQLModel):
    category: ModelCategory
    project_name: str | None = Field(default=None, max_length=100)
    override_model_id: str = Field(max_length=100)
    reason: str = Field(min_length=1)
    expires_at: datetime | None = None
    created_by: str = Field(min_length=1, max_length=100)


class OverrideRead(SQLModel):
    id: uuid.UUID
    project_name: str | None
    category: str
    override_model_id: str
    reason: str
    expires_at: datetime | None
    created_by: str
    created_at: datetime
