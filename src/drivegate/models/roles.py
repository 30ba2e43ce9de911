"""RoleAssignment model — system roles held by a user."""

from __future__ import annotations

import uuid

from sqlmodel import Field, SQLModel


class RoleAssignmentBase(SQLModel):
    """One (user, role) pair. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    role: str = Field(index=True)


class RoleAssignment(RoleAssignmentBase, table=True):
    """Default role table — ``drivegate_role_assignments``."""

    __tablename__ = "drivegate_role_assignments"
