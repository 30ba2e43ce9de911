"""Share model — direct shares and guest links on files or folders.

Provides ``ShareBase`` (non-table) and ``Share`` (concrete table).
Subclass ``ShareBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per backend.

Exactly one of ``file_id`` / ``folder_id`` is set.  A null
``shared_with`` marks a guest link, addressed by ``token_hash``.
The table is unique per (resource, recipient).  Guest rows have a null
recipient, which unique constraints never match, so at most one guest
link per resource is kept by ``ShareService`` instead.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class ShareBase(SQLModel):
    """Base fields for a share record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    file_id: str | None = Field(default=None, index=True)
    folder_id: str | None = Field(default=None, index=True)
    shared_by: str = Field(index=True)
    shared_with: str | None = Field(default=None, index=True)
    token_hash: str | None = Field(default=None, index=True)
    permission: str = Field(default="view")
    notes: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_guest_link(self) -> bool:
        return self.shared_with is None

    @property
    def is_file_share(self) -> bool:
        return self.file_id is not None

    @property
    def is_folder_share(self) -> bool:
        return self.folder_id is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when ``expires_at`` is set and not in the future."""
        if self.expires_at is None:
            return False
        exp = self.expires_at
        # SQLite hands back naive datetimes
        if exp.tzinfo is None:
            exp = exp.replace(tzinfo=UTC)
        return exp <= (now or datetime.now(UTC))


class Share(ShareBase, table=True):
    """Default share table — ``drivegate_shares``."""

    __tablename__ = "drivegate_shares"
    __table_args__ = (
        UniqueConstraint("file_id", "shared_with", name="uq_drivegate_shares_file_recipient"),
        UniqueConstraint("folder_id", "shared_with", name="uq_drivegate_shares_folder_recipient"),
    )
