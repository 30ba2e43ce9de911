"""Permission lattice, actions, and decision outcomes."""

from __future__ import annotations

from enum import Enum


class Permission(str, Enum):
    """Permission level granted by a share. ``EDIT`` implies ``VIEW``."""

    VIEW = "view"
    EDIT = "edit"

    def includes(self, required: Permission) -> bool:
        """True if this level satisfies *required*."""
        return self is Permission.EDIT or required is Permission.VIEW

    @classmethod
    def parse(cls, value: str | Permission) -> Permission:
        """Coerce *value* to a ``Permission``, raising ``ValueError`` if invalid."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Invalid permission: {value!r}. Must be 'view' or 'edit'."
            ) from None


class ResourceType(str, Enum):
    FILE = "file"
    FOLDER = "folder"


class Action(str, Enum):
    """Operations a caller may ask about."""

    VIEW = "view"
    DOWNLOAD = "download"
    PREVIEW = "preview"
    EDIT = "edit"
    CREATE = "create"
    RENAME = "rename"
    MOVE = "move"
    DELETE = "delete"

    @property
    def required(self) -> Permission:
        """The permission level this action needs."""
        if self in (Action.VIEW, Action.DOWNLOAD, Action.PREVIEW):
            return Permission.VIEW
        return Permission.EDIT


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    NOT_FOUND = "not_found"

    @property
    def status_code(self) -> int:
        return {Decision.ALLOW: 200, Decision.DENY: 403, Decision.NOT_FOUND: 404}[self]


class GuestStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    GONE = "gone"

    @property
    def status_code(self) -> int:
        return {GuestStatus.FOUND: 200, GuestStatus.NOT_FOUND: 404, GuestStatus.GONE: 410}[self]
