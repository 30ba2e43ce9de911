"""Access control: permission contexts, shares, guest links, and the folder tree."""

from drivegate.acl.builder import PermissionContextBuilder
from drivegate.acl.context import FolderGrant, PermissionContext
from drivegate.acl.exceptions import (
    BulkOperationError,
    ConflictError,
    DrivegateError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    ValidationError,
)
from drivegate.acl.folders import FolderService
from drivegate.acl.guest import GuestAccessResolver
from drivegate.acl.permissions import Action, Decision, GuestStatus, Permission, ResourceType
from drivegate.acl.shares import ShareService, hash_token
from drivegate.acl.subtree import SubtreeAuthorizer
from drivegate.acl.trash import TrashService
from drivegate.acl.types import BulkResult, GuestResolution, Principal, RevokedShare, ShareResult

__all__ = [
    "Action",
    "BulkOperationError",
    "BulkResult",
    "ConflictError",
    "Decision",
    "DrivegateError",
    "FolderGrant",
    "FolderService",
    "ForbiddenError",
    "GoneError",
    "GuestAccessResolver",
    "GuestResolution",
    "GuestStatus",
    "NotFoundError",
    "Permission",
    "PermissionContext",
    "PermissionContextBuilder",
    "Principal",
    "ResourceType",
    "RevokedShare",
    "ShareResult",
    "ShareService",
    "SubtreeAuthorizer",
    "TrashService",
    "ValidationError",
    "hash_token",
]
