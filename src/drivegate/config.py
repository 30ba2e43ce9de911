"""EngineConfig and the table models an engine works against."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from drivegate.models.activity import ActivityLog
from drivegate.models.files import File, Folder
from drivegate.models.roles import RoleAssignment
from drivegate.models.shares import Share
from drivegate.models.tags import Tag, Taggable, UserFavorite

if TYPE_CHECKING:
    from drivegate.models.activity import ActivityLogBase
    from drivegate.models.files import FileBase, FolderBase
    from drivegate.models.roles import RoleAssignmentBase
    from drivegate.models.shares import ShareBase
    from drivegate.models.tags import TagBase, TaggableBase, UserFavoriteBase


@dataclass
class EngineConfig:
    """Settings for an ``AccessEngine``."""

    admin_role: str = "admin"
    """Role name that grants the system admin override."""

    token_bytes: int = 48
    """Random bytes per guest token, before URL-safe encoding."""

    guest_view_action: str = "guest_view"
    """Activity action recorded the first time a guest link is used."""

    trash_retention_days: int = 30
    """Days between trashing an item and its ``purge_at``."""

    def __post_init__(self) -> None:
        if not self.admin_role:
            raise ValueError("admin_role must not be empty")
        if self.token_bytes < 16:
            raise ValueError("token_bytes must be at least 16")
        if self.trash_retention_days < 0:
            raise ValueError("trash_retention_days must not be negative")


@dataclass
class ModelSet:
    """Concrete table classes. Swap any of them for a custom subclass."""

    folder: type[FolderBase] = Folder
    file: type[FileBase] = File
    share: type[ShareBase] = Share
    role: type[RoleAssignmentBase] = RoleAssignment
    activity: type[ActivityLogBase] = ActivityLog
    favorite: type[UserFavoriteBase] = UserFavorite
    tag: type[TagBase] = Tag
    taggable: type[TaggableBase] = Taggable

    def tables(self) -> list[type]:
        return [
            self.folder,
            self.file,
            self.share,
            self.role,
            self.activity,
            self.favorite,
            self.tag,
            self.taggable,
        ]
