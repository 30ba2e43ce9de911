"""Result types: ShareResult, RevokedShare, GuestResolution, bulk results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from drivegate.models.shares import ShareBase

    from .context import PermissionContext
    from .permissions import GuestStatus, ResourceType


@dataclass(frozen=True, slots=True)
class Principal:
    """The authenticated identity supplied by the auth layer."""

    user_id: str
    is_admin: bool = False


@dataclass
class ShareResult:
    """Result of creating or refreshing a share.

    ``token`` is the raw guest token.  It is only ever returned here; the
    database keeps its hash.
    """

    share: ShareBase
    created: bool
    token: str | None = None


@dataclass(frozen=True, slots=True)
class RevokedShare:
    """Snapshot of a deleted share, enough to clean up after it."""

    share_id: str
    resource_type: ResourceType
    resource_id: str
    shared_by: str
    shared_with: str | None


@dataclass
class GuestResolution:
    """Outcome of resolving a raw guest token."""

    status: GuestStatus
    context: PermissionContext | None = None
    share: ShareBase | None = None


@dataclass
class BulkResult:
    """Counts for a bulk operation that was applied in full."""

    files: int = 0
    folders: int = 0
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.files + self.folders
