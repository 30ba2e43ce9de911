"""Tests for ShareService — upsert, guest links, revoke cleanup, dedup."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from drivegate.acl.exceptions import ConflictError, NotFoundError, ValidationError
from drivegate.acl.favorites import FavoriteService
from drivegate.acl.folders import FolderService
from drivegate.acl.permissions import Permission, ResourceType
from drivegate.acl.shares import ShareService, hash_token
from drivegate.acl.tags import TagService
from drivegate.models import File, Folder, Share, Tag, Taggable, UserFavorite

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@pytest.fixture
def shares() -> ShareService:
    return ShareService(Share)


@pytest.fixture
def folders() -> FolderService:
    return FolderService(Folder, File)


@pytest.fixture
def favorites() -> FavoriteService:
    return FavoriteService(UserFavorite)


@pytest.fixture
def tags() -> TagService:
    return TagService(Tag, Taggable)


async def _all_shares(session: AsyncSession) -> list[Share]:
    result = await session.execute(select(Share))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Share model
# ---------------------------------------------------------------------------


class TestShareModel:
    def test_guest_link_flags(self):
        share = Share(folder_id="d", shared_by="alice")
        assert share.is_guest_link
        assert share.is_folder_share
        assert not share.is_file_share

    def test_expiry(self):
        now = datetime.now(UTC)
        assert not Share(file_id="f", shared_by="a").is_expired()
        assert Share(file_id="f", shared_by="a", expires_at=now - timedelta(seconds=1)).is_expired()
        assert not Share(file_id="f", shared_by="a", expires_at=now + timedelta(hours=1)).is_expired()

    def test_naive_expiry_is_utc(self):
        naive_past = (datetime.now(UTC) - timedelta(minutes=5)).replace(tzinfo=None)
        assert Share(file_id="f", shared_by="a", expires_at=naive_past).is_expired()

    async def test_one_row_per_resource_and_recipient(self, async_session: AsyncSession):
        async_session.add(Share(folder_id="d", shared_by="alice", shared_with="bob"))
        async_session.add(
            Share(folder_id="d", shared_by="carol", shared_with="bob", permission="edit")
        )
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_guest_rows_are_not_constrained(self, async_session: AsyncSession):
        async_session.add(Share(file_id="f", shared_by="alice", token_hash="a"))
        async_session.add(Share(file_id="f", shared_by="alice", token_hash="b"))
        async_session.add(Share(file_id="f", shared_by="alice", shared_with="bob"))
        await async_session.flush()
        assert len(await _all_shares(async_session)) == 3


# ---------------------------------------------------------------------------
# upsert_share
# ---------------------------------------------------------------------------


class TestUpsertShare:
    async def test_create_direct(self, shares, async_session: AsyncSession):
        result = await shares.upsert_share(
            async_session, shared_by="alice", file_id="f1", shared_with="bob"
        )
        assert result.created
        assert result.token is None
        assert result.share.permission == "view"
        assert result.share.token_hash is None

    async def test_second_call_updates_in_place(self, shares, async_session: AsyncSession):
        first = await shares.upsert_share(
            async_session, shared_by="alice", file_id="f1", shared_with="bob"
        )
        second = await shares.upsert_share(
            async_session,
            shared_by="alice",
            file_id="f1",
            shared_with="bob",
            permission=Permission.EDIT,
            notes="go ahead",
        )
        assert not second.created
        assert second.share.id == first.share.id
        assert second.share.permission == "edit"
        assert second.share.notes == "go ahead"
        assert len(await _all_shares(async_session)) == 1

    async def test_reuses_expired_row(self, shares, async_session: AsyncSession):
        old = Share(
            file_id="f1",
            shared_by="alice",
            shared_with="bob",
            expires_at=datetime.now(UTC) - timedelta(days=1),
        )
        async_session.add(old)
        await async_session.flush()
        result = await shares.upsert_share(
            async_session, shared_by="alice", file_id="f1", shared_with="bob"
        )
        assert result.share.id == old.id
        assert result.share.expires_at is None

    async def test_guest_link_token(self, shares, async_session: AsyncSession):
        result = await shares.upsert_share(async_session, shared_by="alice", folder_id="d1")
        assert result.created
        assert result.token
        assert result.share.token_hash == hash_token(result.token)
        assert result.token not in (result.share.token_hash or "")

    async def test_guest_link_reused_with_new_token(self, shares, async_session: AsyncSession):
        first = await shares.upsert_share(async_session, shared_by="alice", file_id="f1")
        second = await shares.upsert_share(async_session, shared_by="alice", file_id="f1")
        assert second.share.id == first.share.id
        assert second.token != first.token
        assert await shares.find_by_token(async_session, first.token) is None
        found = await shares.find_by_token(async_session, second.token)
        assert found is not None and found.id == first.share.id

    async def test_guest_and_direct_are_separate_rows(self, shares, async_session: AsyncSession):
        await shares.upsert_share(async_session, shared_by="alice", file_id="f1")
        await shares.upsert_share(async_session, shared_by="alice", file_id="f1", shared_with="bob")
        assert len(await _all_shares(async_session)) == 2

    async def test_edit_guest_link_rejected(self, shares, async_session: AsyncSession):
        with pytest.raises(ValidationError) as exc_info:
            await shares.upsert_share(
                async_session, shared_by="alice", file_id="f1", permission="edit"
            )
        assert "permission" in exc_info.value.errors
        assert exc_info.value.status_code == 422

    async def test_invalid_permission(self, shares, async_session: AsyncSession):
        with pytest.raises(ValidationError, match="Invalid permission"):
            await shares.upsert_share(
                async_session, shared_by="alice", file_id="f1", shared_with="bob", permission="admin"
            )

    async def test_self_share_rejected(self, shares, async_session: AsyncSession):
        with pytest.raises(ValidationError) as exc_info:
            await shares.upsert_share(
                async_session, shared_by="alice", file_id="f1", shared_with="alice"
            )
        assert "shared_with" in exc_info.value.errors

    async def test_needs_exactly_one_resource(self, shares, async_session: AsyncSession):
        with pytest.raises(ValidationError):
            await shares.upsert_share(async_session, shared_by="alice", shared_with="bob")
        with pytest.raises(ValidationError):
            await shares.upsert_share(
                async_session, shared_by="alice", file_id="f", folder_id="d", shared_with="bob"
            )

    async def test_past_expiry_rejected(self, shares, async_session: AsyncSession):
        with pytest.raises(ValidationError):
            await shares.upsert_share(
                async_session,
                shared_by="alice",
                file_id="f1",
                shared_with="bob",
                expires_at=datetime.now(UTC) - timedelta(seconds=1),
            )

    async def test_concurrent_insert_is_a_conflict(
        self, shares, async_session: AsyncSession, monkeypatch
    ):
        await shares.upsert_share(async_session, shared_by="alice", file_id="f1", shared_with="bob")

        async def _not_found(*args, **kwargs):
            return None

        monkeypatch.setattr(shares, "_find_row", _not_found)
        with pytest.raises(ConflictError) as exc_info:
            await shares.upsert_share(
                async_session, shared_by="alice", file_id="f1", shared_with="bob"
            )
        assert exc_info.value.status_code == 409


# ---------------------------------------------------------------------------
# update / listing
# ---------------------------------------------------------------------------


class TestUpdateAndList:
    async def test_update_permission(self, shares, async_session: AsyncSession):
        result = await shares.upsert_share(
            async_session, shared_by="alice", file_id="f1", shared_with="bob"
        )
        await shares.update_share(async_session, result.share, permission="edit")
        assert result.share.permission == "edit"

    async def test_update_past_expiry_rejected(self, shares, async_session: AsyncSession):
        result = await shares.upsert_share(
            async_session, shared_by="alice", file_id="f1", shared_with="bob"
        )
        with pytest.raises(ValidationError) as exc_info:
            await shares.update_share(
                async_session,
                result.share,
                permission="edit",
                expires_at=datetime.now(UTC) - timedelta(minutes=1),
            )
        assert "expires_at" in exc_info.value.errors
        assert result.share.permission == "view"
        assert result.share.expires_at is None

    async def test_update_guest_to_edit_rejected(self, shares, async_session: AsyncSession):
        result = await shares.upsert_share(async_session, shared_by="alice", file_id="f1")
        with pytest.raises(ValidationError):
            await shares.update_share(async_session, result.share, permission="edit")

    async def test_clear_expiry(self, shares, async_session: AsyncSession):
        result = await shares.upsert_share(
            async_session,
            shared_by="alice",
            file_id="f1",
            shared_with="bob",
            expires_at=datetime.now(UTC) + timedelta(days=1),
        )
        await shares.update_share(async_session, result.share, clear_expiry=True)
        assert result.share.expires_at is None

    async def test_list_shared_with_excludes_expired(self, shares, async_session: AsyncSession):
        await shares.upsert_share(async_session, shared_by="alice", file_id="f1", shared_with="bob")
        async_session.add(
            Share(
                file_id="f2",
                shared_by="alice",
                shared_with="bob",
                expires_at=datetime.now(UTC) - timedelta(days=1),
            )
        )
        await async_session.flush()
        live = await shares.list_shared_with(async_session, "bob")
        assert [s.file_id for s in live] == ["f1"]
        assert len(await shares.list_shared_by(async_session, "alice")) == 2

    async def test_list_on_resource(self, shares, async_session: AsyncSession):
        await shares.upsert_share(async_session, shared_by="alice", folder_id="d1", shared_with="bob")
        await shares.upsert_share(async_session, shared_by="alice", folder_id="d1")
        on_folder = await shares.list_shares_on_resource(async_session, ResourceType.FOLDER, "d1")
        assert len(on_folder) == 2
        assert await shares.list_shares_on_resource(async_session, ResourceType.FILE, "d1") == []


# ---------------------------------------------------------------------------
# revoke
# ---------------------------------------------------------------------------


class TestRevoke:
    async def test_revoke_returns_snapshot(self, shares, async_session: AsyncSession):
        result = await shares.upsert_share(
            async_session, shared_by="alice", folder_id="d1", shared_with="bob"
        )
        revoked = await shares.revoke(async_session, result.share.id)
        assert revoked.resource_type is ResourceType.FOLDER
        assert revoked.resource_id == "d1"
        assert revoked.shared_with == "bob"
        assert await shares.get_share(async_session, result.share.id) is None

    async def test_revoke_missing(self, shares, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await shares.revoke(async_session, "nope")

    async def test_folder_cleanup_is_scoped(
        self, shares, folders, favorites, tags, async_session: AsyncSession
    ):
        root = await folders.create_folder(async_session, "alice", "Shared")
        child = await folders.create_folder(async_session, "alice", "Child", root.id)
        outside = await folders.create_folder(async_session, "alice", "Outside")
        inner_file = File(owner_id="alice", name="in.txt", folder_id=child.id)
        outer_file = File(owner_id="alice", name="out.txt", folder_id=outside.id)
        async_session.add_all([inner_file, outer_file])
        await async_session.flush()

        await favorites.bulk_add(async_session, "bob", ResourceType.FILE, [inner_file.id, outer_file.id])
        await favorites.bulk_add(async_session, "bob", ResourceType.FOLDER, [child.id])
        await favorites.bulk_add(async_session, "carol", ResourceType.FILE, [inner_file.id])
        bob_tag = await tags.create_tag(async_session, "bob", "work")
        carol_tag = await tags.create_tag(async_session, "carol", "work")
        await tags.assign(async_session, [bob_tag], ResourceType.FILE, [inner_file.id, outer_file.id])
        await tags.assign(async_session, [carol_tag], ResourceType.FILE, [inner_file.id])

        result = await shares.upsert_share(
            async_session, shared_by="alice", folder_id=root.id, shared_with="bob"
        )
        revoked = await shares.revoke(async_session, result.share.id)
        removed = await shares.cleanup_recipient_metadata(
            async_session, revoked, folders=folders, favorites=favorites, tags=tags
        )
        assert removed == 3

        bob_favs = {f.resource_id for f in await favorites.list_for_user(async_session, "bob")}
        assert bob_favs == {outer_file.id}
        carol_favs = await favorites.list_for_user(async_session, "carol")
        assert [f.resource_id for f in carol_favs] == [inner_file.id]
        bob_links = {link.resource_id for link in await tags.list_links_for_user(async_session, "bob")}
        assert bob_links == {outer_file.id}
        assert len(await tags.list_links_for_user(async_session, "carol")) == 1

    async def test_guest_revoke_cleans_nothing(
        self, shares, folders, favorites, tags, async_session: AsyncSession
    ):
        result = await shares.upsert_share(async_session, shared_by="alice", file_id="f1")
        revoked = await shares.revoke(async_session, result.share.id)
        removed = await shares.cleanup_recipient_metadata(
            async_session, revoked, folders=folders, favorites=favorites, tags=tags
        )
        assert removed == 0


# ---------------------------------------------------------------------------
# cleanup_duplicate_guest_links
# ---------------------------------------------------------------------------


class TestCleanupDuplicates:
    async def test_keeps_newest_guest_link(self, shares, async_session: AsyncSession):
        base = datetime.now(UTC) - timedelta(hours=3)
        rows = [
            Share(folder_id="d1", shared_by="alice", token_hash=f"h{i}", created_at=base + timedelta(hours=i))
            for i in range(3)
        ]
        async_session.add_all(rows)
        async_session.add(Share(folder_id="d2", shared_by="alice", token_hash="other"))
        await async_session.flush()

        deleted = await shares.cleanup_duplicate_guest_links(async_session)
        assert deleted == 2
        remaining = await _all_shares(async_session)
        assert {s.token_hash for s in remaining} == {"h2", "other"}

    async def test_idempotent(self, shares, async_session: AsyncSession):
        async_session.add(Share(file_id="f1", shared_by="alice", token_hash="a"))
        async_session.add(Share(file_id="f1", shared_by="alice", token_hash="b"))
        await async_session.flush()
        assert await shares.cleanup_duplicate_guest_links(async_session) == 1
        assert await shares.cleanup_duplicate_guest_links(async_session) == 0
        assert len(await _all_shares(async_session)) == 1
