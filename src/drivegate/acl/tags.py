"""TagService — user-owned tags and their links to files and folders."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlmodel import select

from .exceptions import ValidationError
from .folders import validate_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.models.tags import TagBase, TaggableBase

    from .permissions import ResourceType


class TagService:
    """Tag CRUD and assignment. Callers authorize access to the resources."""

    def __init__(self, tag_model: type[TagBase], taggable_model: type[TaggableBase]) -> None:
        self._tag_model = tag_model
        self._taggable_model = taggable_model

    async def create_tag(
        self, session: AsyncSession, user_id: str, name: str, color: str | None = None
    ) -> TagBase:
        name = validate_name(name)
        model = self._tag_model
        result = await session.execute(
            select(model.id).where(model.user_id == user_id, model.name == name).limit(1)
        )
        if result.first() is not None:
            raise ValidationError.single("name", "A tag with this name already exists.")
        tag = model(user_id=user_id, name=name, color=color)
        session.add(tag)
        await session.flush()
        return tag

    async def resolve_tags(
        self, session: AsyncSession, user_id: str, tag_ids: Sequence[str]
    ) -> list[TagBase]:
        """Load the user's tags by id; any unknown or foreign id is a validation error."""
        wanted = list(dict.fromkeys(tag_ids))
        model = self._tag_model
        result = await session.execute(
            select(model).where(
                model.user_id == user_id,
                model.id.in_(wanted),  # type: ignore[union-attr]
            )
        )
        tags = list(result.scalars().all())
        if len(tags) != len(wanted):
            raise ValidationError.single("tag_ids", "One or more tags not found.")
        return tags

    async def assign(
        self,
        session: AsyncSession,
        tags: Sequence[TagBase],
        resource_type: ResourceType,
        resource_ids: Sequence[str],
    ) -> int:
        """Link every tag to every resource, skipping existing links. Returns links added."""
        if not tags or not resource_ids:
            return 0
        link = self._taggable_model
        tag_ids = [t.id for t in tags]
        result = await session.execute(
            select(link.tag_id, link.resource_id).where(
                link.tag_id.in_(tag_ids),  # type: ignore[union-attr]
                link.resource_type == resource_type.value,
                link.resource_id.in_(list(resource_ids)),  # type: ignore[union-attr]
            )
        )
        existing = {(tag_id, resource_id) for tag_id, resource_id in result.all()}
        added = 0
        for tag_id in tag_ids:
            for resource_id in dict.fromkeys(resource_ids):
                if (tag_id, resource_id) in existing:
                    continue
                session.add(
                    link(tag_id=tag_id, resource_type=resource_type.value, resource_id=resource_id)
                )
                added += 1
        await session.flush()
        return added

    async def list_links_for_user(
        self, session: AsyncSession, user_id: str
    ) -> list[TaggableBase]:
        tag = self._tag_model
        link = self._taggable_model
        result = await session.execute(
            select(link).join(tag, tag.id == link.tag_id).where(tag.user_id == user_id)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())

    async def cleanup_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        resource_type: ResourceType,
        resource_ids: Sequence[str],
    ) -> int:
        """Remove links from *user_id*'s tags to the given resources only."""
        if not resource_ids:
            return 0
        tag = self._tag_model
        link = self._taggable_model
        own_tags = select(tag.id).where(tag.user_id == user_id)
        result = await session.execute(
            sa_delete(link).where(
                link.tag_id.in_(own_tags),  # type: ignore[union-attr]
                link.resource_type == resource_type.value,  # type: ignore[arg-type]
                link.resource_id.in_(list(resource_ids)),  # type: ignore[union-attr]
            )
        )
        return result.rowcount or 0
