"""SQLModel database models for drivegate."""

from drivegate.models.activity import ActivityLog, ActivityLogBase
from drivegate.models.files import File, FileBase, Folder, FolderBase
from drivegate.models.roles import RoleAssignment, RoleAssignmentBase
from drivegate.models.shares import Share, ShareBase
from drivegate.models.tags import (
    Tag,
    TagBase,
    Taggable,
    TaggableBase,
    UserFavorite,
    UserFavoriteBase,
)

__all__ = [
    "ActivityLog",
    "ActivityLogBase",
    "File",
    "FileBase",
    "Folder",
    "FolderBase",
    "RoleAssignment",
    "RoleAssignmentBase",
    "Share",
    "ShareBase",
    "Tag",
    "TagBase",
    "Taggable",
    "TaggableBase",
    "UserFavorite",
    "UserFavoriteBase",
]
