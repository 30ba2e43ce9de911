"""Tests for PermissionContextBuilder — bounded loading of grants."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from drivegate.acl.builder import PermissionContextBuilder
from drivegate.acl.folders import FolderService
from drivegate.acl.permissions import Permission
from drivegate.acl.types import Principal
from drivegate.models import File, Folder, RoleAssignment, Share

if TYPE_CHECKING:
    from conftest import QueryCounter
    from sqlalchemy.ext.asyncio import AsyncSession


@pytest.fixture
def builder() -> PermissionContextBuilder:
    return PermissionContextBuilder(Share, Folder, RoleAssignment)


@pytest.fixture
def folders() -> FolderService:
    return FolderService(Folder, File)


async def _populate(session: AsyncSession, folders: FolderService, owner: str, n: int) -> Folder:
    """Create *n* folders and *n* files for *owner*; return the first folder."""
    first = await folders.create_folder(session, owner, "f0")
    parent = first
    for i in range(1, n):
        parent = await folders.create_folder(session, owner, f"f{i}", parent.id if i % 5 else None)
    for i in range(n):
        session.add(File(owner_id=owner, name=f"file{i}", folder_id=first.id))
    await session.flush()
    return first


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestBuild:
    async def test_plain_user(self, builder, async_session: AsyncSession):
        ctx = await builder.build(async_session, Principal("bob"))
        assert ctx.principal_id == "bob"
        assert not ctx.is_admin
        assert ctx.direct_file_shares == {}
        assert ctx.folder_shares == ()

    async def test_admin_from_role(self, builder, async_session: AsyncSession):
        async_session.add(RoleAssignment(user_id="root", role="admin"))
        await async_session.flush()
        ctx = await builder.build(async_session, Principal("root"))
        assert ctx.is_admin
        assert "admin" in ctx.roles

    async def test_admin_from_principal(self, builder, async_session: AsyncSession):
        ctx = await builder.build(async_session, Principal("root", is_admin=True))
        assert ctx.is_admin

    async def test_custom_admin_role(self, async_session: AsyncSession):
        builder = PermissionContextBuilder(Share, Folder, RoleAssignment, admin_role="superuser")
        async_session.add(RoleAssignment(user_id="root", role="admin"))
        await async_session.flush()
        ctx = await builder.build(async_session, Principal("root"))
        assert not ctx.is_admin

    async def test_loads_direct_and_folder_shares(
        self, builder, folders, async_session: AsyncSession
    ):
        folder = await folders.create_folder(async_session, "alice", "Projects")
        file = File(owner_id="alice", name="a.txt")
        async_session.add(file)
        async_session.add(Share(file_id=file.id, shared_by="alice", shared_with="bob"))
        async_session.add(
            Share(folder_id=folder.id, shared_by="alice", shared_with="bob", permission="edit")
        )
        await async_session.flush()

        ctx = await builder.build(async_session, Principal("bob"))
        assert ctx.direct_file_shares == {file.id: Permission.VIEW}
        assert len(ctx.folder_shares) == 1
        grant = ctx.folder_shares[0]
        assert grant.folder_id == folder.id
        assert grant.path == folder.path
        assert grant.permission is Permission.EDIT

    async def test_ignores_other_users_and_guest_links(
        self, builder, folders, async_session: AsyncSession
    ):
        folder = await folders.create_folder(async_session, "alice", "Projects")
        async_session.add(Share(folder_id=folder.id, shared_by="alice", shared_with="carol"))
        async_session.add(Share(folder_id=folder.id, shared_by="alice", token_hash="x"))
        await async_session.flush()
        ctx = await builder.build(async_session, Principal("bob"))
        assert ctx.folder_shares == ()

    async def test_excludes_expired(self, builder, folders, async_session: AsyncSession):
        folder = await folders.create_folder(async_session, "alice", "Old")
        past = datetime.now(UTC) - timedelta(minutes=1)
        future = datetime.now(UTC) + timedelta(days=1)
        async_session.add(
            Share(folder_id=folder.id, shared_by="alice", shared_with="bob", expires_at=past)
        )
        async_session.add(
            Share(file_id="f-live", shared_by="alice", shared_with="bob", expires_at=future)
        )
        await async_session.flush()
        ctx = await builder.build(async_session, Principal("bob"))
        assert ctx.folder_shares == ()
        assert ctx.direct_file_shares == {"f-live": Permission.VIEW}

    async def test_folder_path_is_current(self, builder, folders, async_session: AsyncSession):
        a = await folders.create_folder(async_session, "alice", "A")
        b = await folders.create_folder(async_session, "alice", "B")
        child = await folders.create_folder(async_session, "alice", "C", a.id)
        async_session.add(Share(folder_id=child.id, shared_by="alice", shared_with="bob"))
        await async_session.flush()

        await folders.move_folder(async_session, child.id, b.id)
        ctx = await builder.build(async_session, Principal("bob"))
        assert ctx.folder_shares[0].path == f"{b.path}{child.id}/"


# ---------------------------------------------------------------------------
# Query bounds
# ---------------------------------------------------------------------------


class TestQueryBound:
    async def test_three_queries(
        self, builder, async_session: AsyncSession, query_counter: QueryCounter
    ):
        with query_counter:
            await builder.build(async_session, Principal("bob"))
        assert query_counter.count == 3

    async def test_count_independent_of_owner_size(
        self,
        builder,
        folders,
        async_session: AsyncSession,
        query_counter: QueryCounter,
    ):
        small = await _populate(async_session, folders, "alice", 50)
        async_session.add(Share(folder_id=small.id, shared_by="alice", shared_with="bob"))
        await async_session.flush()
        with query_counter:
            await builder.build(async_session, Principal("bob"))
        small_count = query_counter.count

        big = await _populate(async_session, folders, "carol", 250)
        async_session.add(Share(folder_id=big.id, shared_by="carol", shared_with="bob"))
        await async_session.flush()
        with query_counter:
            ctx = await builder.build(async_session, Principal("bob"))
        big_count = query_counter.count

        assert len(ctx.folder_shares) == 2
        assert big_count - small_count <= 5
        assert big_count == small_count
