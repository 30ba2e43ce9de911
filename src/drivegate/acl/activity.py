"""ActivityLogService — append-only audit rows."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlmodel import select

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.models.activity import ActivityLogBase

logger = logging.getLogger(__name__)


class ActivityLogService:
    def __init__(self, activity_model: type[ActivityLogBase]) -> None:
        self._activity_model = activity_model

    async def log(
        self,
        session: AsyncSession,
        action: str,
        resource_type: str,
        resource_id: str,
        *,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ActivityLogBase:
        row = self._activity_model(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
        )
        session.add(row)
        await session.flush()
        return row

    async def log_once(
        self,
        session: AsyncSession,
        action: str,
        resource_type: str,
        resource_id: str,
        *,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Write the row unless one already exists for (action, resource). Returns True if written."""
        model = self._activity_model
        result = await session.execute(
            select(model.id)
            .where(
                model.action == action,
                model.resource_type == resource_type,
                model.resource_id == resource_id,
            )
            .limit(1)
        )
        if result.first() is not None:
            return False
        await self.log(
            session, action, resource_type, resource_id, user_id=user_id, details=details
        )
        logger.debug("Recorded first %s for %s %s", action, resource_type, resource_id)
        return True

    async def list_for_resource(
        self, session: AsyncSession, resource_type: str, resource_id: str
    ) -> list[ActivityLogBase]:
        model = self._activity_model
        result = await session.execute(
            select(model).where(
                model.resource_type == resource_type,
                model.resource_id == resource_id,
            )
        )
        return list(result.scalars().all())
