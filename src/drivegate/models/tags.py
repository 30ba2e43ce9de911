"""Per-user resource metadata: favorites, tags, and tag links."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class UserFavoriteBase(SQLModel):
    """A user's favorite marker on a file or folder."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    resource_type: str = Field(default="file")
    resource_id: str = Field(index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class UserFavorite(UserFavoriteBase, table=True):
    """Default favorites table — ``drivegate_favorites``."""

    __tablename__ = "drivegate_favorites"


class TagBase(SQLModel):
    """A label owned by one user."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    name: str = Field(default="")
    color: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Tag(TagBase, table=True):
    """Default tag table — ``drivegate_tags``."""

    __tablename__ = "drivegate_tags"


class TaggableBase(SQLModel):
    """Link between a tag and a file or folder."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    tag_id: str = Field(index=True)
    resource_type: str = Field(default="file")
    resource_id: str = Field(index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Taggable(TaggableBase, table=True):
    """Default tag link table — ``drivegate_taggables``."""

    __tablename__ = "drivegate_taggables"
