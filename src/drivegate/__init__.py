"""drivegate: hierarchical permission resolution for files and folders.

Ownership, admin override, direct file shares, and inherited folder shares,
resolved from a per-request context built in a fixed number of queries.
"""

__version__ = "0.1.0"

from drivegate._engine import AccessEngine
from drivegate.acl import (
    Action,
    BulkOperationError,
    ConflictError,
    BulkResult,
    Decision,
    DrivegateError,
    ForbiddenError,
    GoneError,
    GuestResolution,
    GuestStatus,
    NotFoundError,
    Permission,
    PermissionContext,
    Principal,
    ResourceType,
    RevokedShare,
    ShareResult,
    ValidationError,
)
from drivegate.config import EngineConfig, ModelSet
from drivegate.events import EventBus, EventType, ResourceEvent

__all__ = [
    "AccessEngine",
    "Action",
    "BulkOperationError",
    "BulkResult",
    "ConflictError",
    "Decision",
    "DrivegateError",
    "EngineConfig",
    "EventBus",
    "EventType",
    "ForbiddenError",
    "GoneError",
    "GuestResolution",
    "GuestStatus",
    "ModelSet",
    "NotFoundError",
    "Permission",
    "PermissionContext",
    "Principal",
    "ResourceEvent",
    "ResourceType",
    "RevokedShare",
    "ShareResult",
    "ValidationError",
    "__version__",
]
