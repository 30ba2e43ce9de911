"""ActivityLog model — audit trail rows, including guest access."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


class ActivityLogBase(SQLModel):
    """Base fields for an activity row. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    action: str = Field(index=True)
    resource_type: str = Field(default="")
    resource_id: str = Field(default="", index=True)
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class ActivityLog(ActivityLogBase, table=True):
    """Default activity table — ``drivegate_activity_logs``."""

    __tablename__ = "drivegate_activity_logs"
