"""Tests for SubtreeAuthorizer — move boundaries for shared-folder editors."""

from __future__ import annotations

import pytest

from drivegate.acl.context import FolderGrant, PermissionContext
from drivegate.acl.exceptions import ForbiddenError
from drivegate.acl.permissions import Decision, Permission
from drivegate.acl.subtree import SubtreeAuthorizer

SHARED = "/s/"
INSIDE = "/s/a/"
OTHER_INSIDE = "/s/b/"
OUTSIDE = "/t/"


@pytest.fixture
def subtree() -> SubtreeAuthorizer:
    return SubtreeAuthorizer()


@pytest.fixture
def editor() -> PermissionContext:
    return PermissionContext(
        principal_id="bob",
        folder_shares=(FolderGrant("s", SHARED, Permission.EDIT),),
    )


# ---------------------------------------------------------------------------
# authorize_move
# ---------------------------------------------------------------------------


class TestAuthorizeMove:
    def test_owner_is_exempt(self, subtree):
        ctx = PermissionContext(principal_id="alice")
        assert subtree.authorize_move(ctx, "alice", INSIDE, None) is Decision.ALLOW
        assert subtree.authorize_move(ctx, "alice", INSIDE, OUTSIDE) is Decision.ALLOW

    def test_admin_is_exempt(self, subtree):
        ctx = PermissionContext(principal_id="root", is_admin=True)
        assert subtree.authorize_move(ctx, "alice", INSIDE, None) is Decision.ALLOW

    def test_move_within_subtree(self, subtree, editor):
        assert subtree.authorize_move(editor, "alice", INSIDE, OTHER_INSIDE) is Decision.ALLOW

    def test_move_to_subtree_root(self, subtree, editor):
        assert subtree.authorize_move(editor, "alice", INSIDE, SHARED) is Decision.ALLOW

    def test_move_out_of_subtree(self, subtree, editor):
        assert subtree.authorize_move(editor, "alice", INSIDE, OUTSIDE) is Decision.DENY

    def test_move_to_root(self, subtree, editor):
        assert subtree.authorize_move(editor, "alice", INSIDE, None) is Decision.DENY

    def test_view_share_grants_no_subtree(self, subtree):
        ctx = PermissionContext(
            principal_id="bob",
            folder_shares=(FolderGrant("s", SHARED, Permission.VIEW),),
        )
        assert subtree.authorize_move(ctx, "alice", INSIDE, OTHER_INSIDE) is Decision.DENY

    def test_cannot_cross_between_edit_subtrees(self, subtree):
        ctx = PermissionContext(
            principal_id="bob",
            folder_shares=(
                FolderGrant("s", SHARED, Permission.EDIT),
                FolderGrant("t", OUTSIDE, Permission.EDIT),
            ),
        )
        assert subtree.authorize_move(ctx, "alice", INSIDE, OUTSIDE) is Decision.DENY

    def test_nested_edit_shares_use_any_covering_root(self, subtree):
        ctx = PermissionContext(
            principal_id="bob",
            folder_shares=(
                FolderGrant("s", SHARED, Permission.EDIT),
                FolderGrant("a", INSIDE, Permission.EDIT),
            ),
        )
        # Source lies under both roots; the outer one admits the destination
        assert subtree.authorize_move(ctx, "alice", "/s/a/x/", OTHER_INSIDE) is Decision.ALLOW


class TestAssertMoveAllowed:
    def test_raises_forbidden(self, subtree, editor):
        with pytest.raises(ForbiddenError) as exc_info:
            subtree.assert_move_allowed(editor, "alice", INSIDE, OUTSIDE)
        assert exc_info.value.status_code == 403

    def test_passes(self, subtree, editor):
        subtree.assert_move_allowed(editor, "alice", INSIDE, OTHER_INSIDE)
