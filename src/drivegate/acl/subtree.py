"""SubtreeAuthorizer — keeps non-owner moves inside the shared subtree."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import ForbiddenError
from .paths import is_within
from .permissions import Decision

if TYPE_CHECKING:
    from .context import PermissionContext

logger = logging.getLogger(__name__)


class SubtreeAuthorizer:
    """Move boundary for principals who edit through a folder share.

    A collaborator holding ``edit`` on shared folder S may move things
    around inside S, but not out of it: not to their own folders, not to
    a different shared subtree, and not to the account root.  Owners and
    admins have no boundary.
    """

    def authorize_move(
        self,
        context: PermissionContext,
        owner_id: str | None,
        source_path: str | None,
        dest_path: str | None,
    ) -> Decision:
        """Decide a move of a resource under *source_path* to *dest_path* (``None`` = root)."""
        if context.is_exempt(owner_id):
            return Decision.ALLOW
        if dest_path is None:
            return Decision.DENY
        roots = context.edit_subtree_roots(source_path)
        if any(is_within(dest_path, root) for root in roots):
            return Decision.ALLOW
        logger.debug(
            "Move by %s from %s to %s crosses its shared subtree",
            context.principal_id,
            source_path,
            dest_path,
        )
        return Decision.DENY

    def assert_move_allowed(
        self,
        context: PermissionContext,
        owner_id: str | None,
        source_path: str | None,
        dest_path: str | None,
    ) -> None:
        if self.authorize_move(context, owner_id, source_path, dest_path) is not Decision.ALLOW:
            raise ForbiddenError("Move would leave the shared folder that grants edit access.")
