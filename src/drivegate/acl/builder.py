"""PermissionContextBuilder — loads a principal's grants in three queries.

Stateless: receives the concrete models at construction and a session at
call time, following the other services.  The query count depends only on
the principal's own shares, never on how many resources anyone owns.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_
from sqlmodel import select

from .context import FolderGrant, PermissionContext
from .permissions import Permission

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.models.files import FolderBase
    from drivegate.models.roles import RoleAssignmentBase
    from drivegate.models.shares import ShareBase

    from .types import Principal

logger = logging.getLogger(__name__)


def live_share_clause(model: type[ShareBase], now: datetime):
    """``expires_at IS NULL OR expires_at > now``."""
    return or_(
        model.expires_at.is_(None),  # type: ignore[union-attr]
        model.expires_at > now,  # type: ignore[operator]
    )


class PermissionContextBuilder:
    """Builds a fresh ``PermissionContext`` per request. Nothing is cached."""

    def __init__(
        self,
        share_model: type[ShareBase],
        folder_model: type[FolderBase],
        role_model: type[RoleAssignmentBase],
        *,
        admin_role: str = "admin",
    ) -> None:
        self._share_model = share_model
        self._folder_model = folder_model
        self._role_model = role_model
        self._admin_role = admin_role

    async def build(self, session: AsyncSession, principal: Principal) -> PermissionContext:
        """Assemble the context for *principal*."""
        now = datetime.now(UTC)
        roles = await self._load_roles(session, principal.user_id)
        file_shares = await self._load_direct_file_shares(session, principal.user_id, now)
        folder_shares = await self._load_folder_shares(session, principal.user_id, now)

        is_admin = principal.is_admin or self._admin_role in roles
        logger.debug(
            "Built context for %s: admin=%s file_shares=%d folder_shares=%d",
            principal.user_id,
            is_admin,
            len(file_shares),
            len(folder_shares),
        )
        return PermissionContext(
            principal_id=principal.user_id,
            is_admin=is_admin,
            direct_file_shares=file_shares,
            folder_shares=folder_shares,
            roles=roles,
        )

    async def _load_roles(self, session: AsyncSession, user_id: str) -> frozenset[str]:
        """Query 1: role names held by the user."""
        model = self._role_model
        result = await session.execute(
            select(model.role).where(model.user_id == user_id).distinct()
        )
        return frozenset(result.scalars().all())

    async def _load_direct_file_shares(
        self, session: AsyncSession, user_id: str, now: datetime
    ) -> dict[str, Permission]:
        """Query 2: live direct file shares targeting the user."""
        model = self._share_model
        result = await session.execute(
            select(model.file_id, model.permission).where(
                model.file_id.is_not(None),  # type: ignore[union-attr]
                model.shared_with == user_id,
                live_share_clause(model, now),
            )
        )
        shares: dict[str, Permission] = {}
        for file_id, permission in result.all():
            perm = Permission(permission)
            # Duplicate rows should not exist; keep the stronger one if they do
            if shares.get(file_id) is not Permission.EDIT:
                shares[file_id] = perm
        return shares

    async def _load_folder_shares(
        self, session: AsyncSession, user_id: str, now: datetime
    ) -> tuple[FolderGrant, ...]:
        """Query 3: live folder shares targeting the user, joined to the folder's path."""
        share = self._share_model
        folder = self._folder_model
        result = await session.execute(
            select(share.folder_id, folder.path, share.permission)
            .join(folder, folder.id == share.folder_id)  # type: ignore[arg-type]
            .where(
                share.shared_with == user_id,
                live_share_clause(share, now),
            )
        )
        return tuple(
            FolderGrant(folder_id=folder_id, path=path, permission=Permission(permission))
            for folder_id, path, permission in result.all()
        )
