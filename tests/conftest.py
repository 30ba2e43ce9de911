"""Shared fixtures for drivegate tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from drivegate import AccessEngine, Principal
from drivegate.acl.folders import FolderService
from drivegate.acl.shares import ShareService
from drivegate.models import File, Folder, RoleAssignment, Share, Tag, Taggable, UserFavorite

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from drivegate import PermissionContext


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gate(async_engine: AsyncEngine) -> AccessEngine:
    return AccessEngine.from_engine(async_engine)


# =========================================================================
# Query counting
# =========================================================================


class QueryCounter:
    """Counts statements sent to the database while active."""

    def __init__(self) -> None:
        self.count = 0
        self.statements: list[str] = []
        self.active = False

    def _on_execute(self, conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        if self.active:
            self.count += 1
            self.statements.append(statement)

    def __enter__(self) -> QueryCounter:
        self.count = 0
        self.statements = []
        self.active = True
        return self

    def __exit__(self, *exc: object) -> None:
        self.active = False


@pytest.fixture
def query_counter(async_engine: AsyncEngine) -> Iterator[QueryCounter]:
    counter = QueryCounter()
    event.listen(async_engine.sync_engine, "before_cursor_execute", counter._on_execute)
    yield counter
    event.remove(async_engine.sync_engine, "before_cursor_execute", counter._on_execute)


# =========================================================================
# Seeding
# =========================================================================


class Seeder:
    """Writes fixture rows in committed transactions, bypassing authorization."""

    def __init__(self, factory: async_sessionmaker[AsyncSession], gate: AccessEngine) -> None:
        self._factory = factory
        self._gate = gate
        self._folders = FolderService(Folder, File)
        self._shares = ShareService(Share)

    async def folder(self, owner_id: str, name: str, parent: Folder | None = None) -> Folder:
        async with self._factory() as session:
            folder = await self._folders.create_folder(
                session, owner_id, name, parent.id if parent is not None else None
            )
            await session.commit()
            return folder

    async def file(self, owner_id: str, name: str, folder: Folder | None = None) -> File:
        async with self._factory() as session:
            file = File(
                owner_id=owner_id,
                name=name,
                folder_id=folder.id if folder is not None else None,
                size_bytes=len(name),
            )
            session.add(file)
            await session.commit()
            return file

    async def share(self, **kwargs: Any) -> Share:
        async with self._factory() as session:
            result = await self._shares.upsert_share(session, **kwargs)
            await session.commit()
            return result.share

    async def raw_share(self, **kwargs: Any) -> Share:
        """Insert a share row as-is, e.g. already expired or duplicated."""
        async with self._factory() as session:
            share = Share(**kwargs)
            session.add(share)
            await session.commit()
            return share

    async def role(self, user_id: str, role: str) -> None:
        async with self._factory() as session:
            session.add(RoleAssignment(user_id=user_id, role=role))
            await session.commit()

    async def favorite(self, user_id: str, resource_type: str, resource_id: str) -> None:
        async with self._factory() as session:
            session.add(
                UserFavorite(user_id=user_id, resource_type=resource_type, resource_id=resource_id)
            )
            await session.commit()

    async def tag_link(self, user_id: str, resource_type: str, resource_id: str) -> Tag:
        async with self._factory() as session:
            tag = Tag(user_id=user_id, name=f"tag-{resource_id[:8]}")
            session.add(tag)
            await session.flush()
            session.add(Taggable(tag_id=tag.id, resource_type=resource_type, resource_id=resource_id))
            await session.commit()
            return tag

    async def reload(self, model: type, row_id: str) -> Any:
        async with self._factory() as session:
            return await session.get(model, row_id)

    async def context(self, user_id: str, *, is_admin: bool = False) -> PermissionContext:
        return await self._gate.build_context(Principal(user_id, is_admin=is_admin))


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession], gate: AccessEngine) -> Seeder:
    return Seeder(session_factory, gate)
