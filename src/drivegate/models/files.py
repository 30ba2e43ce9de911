"""Folder and File models.

Provides ``FolderBase`` and ``FileBase`` non-table base classes.
Subclass with ``table=True`` and a custom ``__tablename__`` to use a
different table name per backend.
Concrete tables declare the sibling-name unique constraints; custom
subclasses should declare the same ones.

Folders carry a materialized ``path`` of ancestor ids (``/a/b/c/``) so
subtree membership is a prefix test.  Files have no path of their own;
their effective path is the path of their folder.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class FolderBase(SQLModel):
    """Base fields for a folder. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    parent_id: str | None = Field(default=None, index=True)
    name: str = Field(default="")
    path: str = Field(default="", index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    deleted_by: str | None = Field(default=None)
    purge_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None


class Folder(FolderBase, table=True):
    """Default folder table — ``drivegate_folders``."""

    __tablename__ = "drivegate_folders"
    __table_args__ = (
        UniqueConstraint("owner_id", "parent_id", "name", name="uq_drivegate_folders_sibling_name"),
    )


class FileBase(SQLModel):
    """Base fields for a stored file. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    folder_id: str | None = Field(default=None, index=True)
    name: str = Field(default="")
    mime_type: str = Field(default="application/octet-stream")
    size_bytes: int = Field(default=0)
    version: int = Field(default=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    deleted_by: str | None = Field(default=None)
    purge_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None


class File(FileBase, table=True):
    """Default file table — ``drivegate_files``."""

    __tablename__ = "drivegate_files"
    __table_args__ = (
        UniqueConstraint("owner_id", "folder_id", "name", name="uq_drivegate_files_sibling_name"),
    )
