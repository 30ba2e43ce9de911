"""FavoriteService — per-user favorite markers on files and folders."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlmodel import select

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.models.tags import UserFavoriteBase

    from .permissions import ResourceType


class FavoriteService:
    """Stores favorites; access to the resources is checked by the caller."""

    def __init__(self, favorite_model: type[UserFavoriteBase]) -> None:
        self._favorite_model = favorite_model

    async def bulk_add(
        self,
        session: AsyncSession,
        user_id: str,
        resource_type: ResourceType,
        resource_ids: Sequence[str],
    ) -> int:
        """Favorite every resource, skipping ones already favorited. Returns rows added."""
        if not resource_ids:
            return 0
        model = self._favorite_model
        result = await session.execute(
            select(model.resource_id).where(
                model.user_id == user_id,
                model.resource_type == resource_type.value,
                model.resource_id.in_(list(resource_ids)),  # type: ignore[union-attr]
            )
        )
        existing = set(result.scalars().all())
        added = 0
        for resource_id in dict.fromkeys(resource_ids):
            if resource_id in existing:
                continue
            session.add(
                model(user_id=user_id, resource_type=resource_type.value, resource_id=resource_id)
            )
            added += 1
        await session.flush()
        return added

    async def remove(
        self,
        session: AsyncSession,
        user_id: str,
        resource_type: ResourceType,
        resource_id: str,
    ) -> bool:
        return bool(await self.cleanup_for_user(session, user_id, resource_type, [resource_id]))

    async def list_for_user(
        self, session: AsyncSession, user_id: str, resource_type: ResourceType | None = None
    ) -> list[UserFavoriteBase]:
        model = self._favorite_model
        query = select(model).where(model.user_id == user_id)
        if resource_type is not None:
            query = query.where(model.resource_type == resource_type.value)
        result = await session.execute(query.order_by(model.created_at.desc()))  # type: ignore[union-attr]
        return list(result.scalars().all())

    async def cleanup_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        resource_type: ResourceType,
        resource_ids: Sequence[str],
    ) -> int:
        """Remove *user_id*'s favorites on the given resources only."""
        if not resource_ids:
            return 0
        model = self._favorite_model
        result = await session.execute(
            sa_delete(model).where(
                model.user_id == user_id,  # type: ignore[arg-type]
                model.resource_type == resource_type.value,  # type: ignore[arg-type]
                model.resource_id.in_(list(resource_ids)),  # type: ignore[union-attr]
            )
        )
        return result.rowcount or 0
