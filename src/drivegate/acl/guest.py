"""GuestAccessResolver — turns a raw guest token into a scoped context."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .context import PermissionContext
from .permissions import GuestStatus, Permission, ResourceType
from .types import GuestResolution

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .activity import ActivityLogService
    from .folders import FolderService
    from .shares import ShareService

logger = logging.getLogger(__name__)

GUEST_VIEW_ACTION = "guest_view"


class GuestAccessResolver:
    """Resolves guest links.

    Unknown tokens and links whose resource is gone are ``NOT_FOUND``;
    expired links are ``GONE``.  A found link yields a context granting the
    share's permission on its file, or on its folder and every descendant.
    """

    def __init__(
        self,
        shares: ShareService,
        folders: FolderService,
        activity: ActivityLogService,
        *,
        view_action: str = GUEST_VIEW_ACTION,
    ) -> None:
        self._shares = shares
        self._folders = folders
        self._activity = activity
        self._view_action = view_action

    async def resolve(self, session: AsyncSession, raw_token: str) -> GuestResolution:
        share = await self._shares.find_by_token(session, raw_token)
        if share is None or not share.is_guest_link:
            return GuestResolution(status=GuestStatus.NOT_FOUND)
        if share.is_expired():
            logger.debug("Guest token for share %s has expired", share.id)
            return GuestResolution(status=GuestStatus.GONE, share=share)

        # Guest links never carry more than view
        permission = Permission.VIEW

        if share.file_id is not None:
            file = await self._folders.get_file(session, share.file_id)
            if file is None or file.is_trashed:
                return GuestResolution(status=GuestStatus.NOT_FOUND)
            if await self._folders.has_trashed_ancestor(
                session, await self._folders.folder_path_of(session, file.folder_id)
            ):
                return GuestResolution(status=GuestStatus.NOT_FOUND)
            context = PermissionContext.for_guest_file(share.id, file.id, permission)
            resource_type, resource_id = ResourceType.FILE, file.id
        else:
            assert share.folder_id is not None
            folder = await self._folders.get_folder(session, share.folder_id)
            if folder is None or await self._folders.has_trashed_ancestor(session, folder.path):
                return GuestResolution(status=GuestStatus.NOT_FOUND)
            context = PermissionContext.for_guest_folder(share.id, folder.id, folder.path, permission)
            resource_type, resource_id = ResourceType.FOLDER, folder.id

        await self._activity.log_once(
            session,
            self._view_action,
            "share",
            share.id,
            details={
                "shared_resource_type": resource_type.value,
                "shared_resource_id": resource_id,
            },
        )
        return GuestResolution(status=GuestStatus.FOUND, context=context, share=share)
