"""ShareService — share persistence, deduplication, guest links, revoke cleanup.

Stateless service that receives the share model at construction
and a session at call time.  Flushes but never commits.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .builder import live_share_clause
from .exceptions import ConflictError, NotFoundError, ValidationError
from .permissions import Permission, ResourceType
from .types import RevokedShare, ShareResult

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.models.shares import ShareBase

    from .favorites import FavoriteService
    from .folders import FolderService
    from .tags import TagService

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BYTES = 48


def hash_token(raw_token: str) -> str:
    """Unsalted SHA-256 of a guest token.

    Tokens are long random strings, so a fixed digest is enough to make
    the stored value useless without the token itself.
    """
    return hashlib.sha256(raw_token.encode()).hexdigest()


def _resource_of(share: ShareBase) -> tuple[ResourceType, str]:
    if share.file_id is not None:
        return ResourceType.FILE, share.file_id
    if share.folder_id is not None:
        return ResourceType.FOLDER, share.folder_id
    raise ValueError(f"Share {share.id} has neither file_id nor folder_id")


def _eq_or_null(column, value):
    return column.is_(None) if value is None else column == value


def _check_expiry(expires_at: datetime | None) -> None:
    if expires_at is None:
        return
    exp = expires_at if expires_at.tzinfo else expires_at.replace(tzinfo=UTC)
    if exp <= datetime.now(UTC):
        raise ValidationError.single("expires_at", "Expiry must be in the future.")


class ShareService:
    """Manages direct shares and guest links on files and folders.

    Keeps at most one row per (resource, recipient) and at most one guest
    row per resource: asking again updates the existing row in place.
    """

    def __init__(
        self,
        share_model: type[ShareBase],
        *,
        token_bytes: int = DEFAULT_TOKEN_BYTES,
    ) -> None:
        self._share_model = share_model
        self._token_bytes = token_bytes

    def _new_token(self) -> str:
        return secrets.token_urlsafe(self._token_bytes)

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def upsert_share(
        self,
        session: AsyncSession,
        *,
        shared_by: str,
        file_id: str | None = None,
        folder_id: str | None = None,
        shared_with: str | None = None,
        permission: str | Permission = Permission.VIEW,
        expires_at: datetime | None = None,
        notes: str | None = None,
    ) -> ShareResult:
        """Create or refresh a share. Flushes but does not commit.

        A direct share (``shared_with`` set) reuses any existing row for the
        same resource and recipient, expired or not.  A guest link reuses any
        existing guest row for the resource and always gets a fresh token; the
        raw token is returned in ``ShareResult.token`` and never stored.
        """
        if (file_id is None) == (folder_id is None):
            raise ValidationError.single(
                "file_id", "Exactly one of file_id or folder_id is required."
            )
        try:
            perm = Permission.parse(permission)
        except ValueError as exc:
            raise ValidationError.single("permission", str(exc)) from None
        if shared_with is None and perm is Permission.EDIT:
            raise ValidationError.single(
                "permission", "Edit permission requires a recipient (shared_with is required)."
            )
        if shared_with is not None and shared_with == shared_by:
            raise ValidationError.single("shared_with", "Cannot share a resource with yourself.")
        _check_expiry(expires_at)

        existing = await self._find_row(session, file_id, folder_id, shared_with)
        token = self._new_token() if shared_with is None else None
        now = datetime.now(UTC)

        if existing is not None:
            existing.permission = perm.value
            existing.expires_at = expires_at
            existing.notes = notes
            existing.updated_at = now
            if token is not None:
                existing.token_hash = hash_token(token)
            await session.flush()
            logger.debug("Refreshed share %s", existing.id)
            return ShareResult(share=existing, created=False, token=token)

        share = self._share_model(
            file_id=file_id,
            folder_id=folder_id,
            shared_by=shared_by,
            shared_with=shared_with,
            token_hash=hash_token(token) if token is not None else None,
            permission=perm.value,
            notes=notes,
            expires_at=expires_at,
        )
        session.add(share)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"A share on this resource for {shared_with} was created concurrently."
            ) from exc
        logger.debug("Created share %s", share.id)
        return ShareResult(share=share, created=True, token=token)

    async def _find_row(
        self,
        session: AsyncSession,
        file_id: str | None,
        folder_id: str | None,
        shared_with: str | None,
    ) -> ShareBase | None:
        """Newest row for (resource, recipient), ignoring expiry."""
        model = self._share_model
        query = select(model)
        if file_id is not None:
            query = query.where(model.file_id == file_id)
        else:
            query = query.where(model.folder_id == folder_id)
        if shared_with is None:
            query = query.where(model.shared_with.is_(None))  # type: ignore[union-attr]
        else:
            query = query.where(model.shared_with == shared_with)
        result = await session.execute(
            query.order_by(model.created_at.desc()).limit(1)  # type: ignore[union-attr]
        )
        return result.scalars().first()

    async def update_share(
        self,
        session: AsyncSession,
        share: ShareBase,
        *,
        permission: str | Permission | None = None,
        expires_at: datetime | None = None,
        clear_expiry: bool = False,
        notes: str | None = None,
    ) -> ShareBase:
        """Change permission, expiry, or notes of an existing share."""
        if not clear_expiry:
            _check_expiry(expires_at)
        if permission is not None:
            try:
                perm = Permission.parse(permission)
            except ValueError as exc:
                raise ValidationError.single("permission", str(exc)) from None
            if share.is_guest_link and perm is Permission.EDIT:
                raise ValidationError.single(
                    "permission", "Guest links are view-only."
                )
            share.permission = perm.value
        if clear_expiry:
            share.expires_at = None
        elif expires_at is not None:
            share.expires_at = expires_at
        if notes is not None:
            share.notes = notes
        share.updated_at = datetime.now(UTC)
        await session.flush()
        return share

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_share(self, session: AsyncSession, share_id: str) -> ShareBase | None:
        model = self._share_model
        result = await session.execute(select(model).where(model.id == share_id))
        return result.scalar_one_or_none()

    async def find_by_token(self, session: AsyncSession, raw_token: str) -> ShareBase | None:
        """Look up a guest link by the hash of *raw_token*, expired or not."""
        if not raw_token:
            return None
        model = self._share_model
        result = await session.execute(
            select(model).where(model.token_hash == hash_token(raw_token)).limit(1)
        )
        return result.scalars().first()

    async def list_shared_with(self, session: AsyncSession, user_id: str) -> list[ShareBase]:
        """Live shares targeting *user_id*, newest first."""
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.shared_with == user_id, live_share_clause(model, datetime.now(UTC)))
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def list_shared_by(self, session: AsyncSession, user_id: str) -> list[ShareBase]:
        """Every share created by *user_id*, expired ones included, newest first."""
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.shared_by == user_id)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def list_shares_on_resource(
        self, session: AsyncSession, resource_type: ResourceType, resource_id: str
    ) -> list[ShareBase]:
        model = self._share_model
        column = model.file_id if resource_type is ResourceType.FILE else model.folder_id
        result = await session.execute(select(model).where(column == resource_id))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    async def revoke(self, session: AsyncSession, share_id: str) -> RevokedShare:
        """Delete a share and return what is needed to clean up after it."""
        share = await self.get_share(session, share_id)
        if share is None:
            raise NotFoundError(f"Share not found: {share_id}")
        resource_type, resource_id = _resource_of(share)
        revoked = RevokedShare(
            share_id=share.id,
            resource_type=resource_type,
            resource_id=resource_id,
            shared_by=share.shared_by,
            shared_with=share.shared_with,
        )
        await session.delete(share)
        await session.flush()
        logger.info("Revoked share %s on %s %s", share_id, resource_type.value, resource_id)
        return revoked

    async def cleanup_recipient_metadata(
        self,
        session: AsyncSession,
        revoked: RevokedShare,
        *,
        folders: FolderService,
        favorites: FavoriteService,
        tags: TagService,
    ) -> int:
        """Remove the former recipient's favorites and tag links on the shared resource.

        For a folder share this covers the folder, every descendant folder,
        and every file inside them.  Nobody else's entries are touched.
        Guest links have no recipient and nothing to clean.
        """
        user_id = revoked.shared_with
        if user_id is None:
            return 0

        file_ids: list[str] = []
        folder_ids: list[str] = []
        if revoked.resource_type is ResourceType.FILE:
            file_ids = [revoked.resource_id]
        else:
            root = await folders.get_folder(session, revoked.resource_id)
            if root is None:
                return 0
            folder_ids = [f.id for f in await folders.list_subtree(session, root.path)]
            file_ids = await folders.list_subtree_file_ids(session, root.path)

        removed = 0
        removed += await favorites.cleanup_for_user(session, user_id, ResourceType.FILE, file_ids)
        removed += await tags.cleanup_for_user(session, user_id, ResourceType.FILE, file_ids)
        removed += await favorites.cleanup_for_user(session, user_id, ResourceType.FOLDER, folder_ids)
        removed += await tags.cleanup_for_user(session, user_id, ResourceType.FOLDER, folder_ids)
        await session.flush()
        logger.debug("Removed %d metadata rows of %s after revoke", removed, user_id)
        return removed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_duplicate_guest_links(self, session: AsyncSession) -> int:
        """Delete duplicate share rows, keeping the newest of each group.

        Groups are (resource, recipient), with every guest link of a resource
        in one group.  Safe to run repeatedly; returns the rows deleted.
        """
        model = self._share_model
        groups = await session.execute(
            select(model.file_id, model.folder_id, model.shared_with)
            .group_by(model.file_id, model.folder_id, model.shared_with)
            .having(func.count() > 1)
        )

        deleted = 0
        for file_id, folder_id, shared_with in groups.all():
            conditions = [
                _eq_or_null(model.file_id, file_id),
                _eq_or_null(model.folder_id, folder_id),
                _eq_or_null(model.shared_with, shared_with),
            ]
            rows = await session.execute(
                select(model)
                .where(*conditions)
                .order_by(model.created_at.desc(), model.id.desc())  # type: ignore[union-attr]
            )
            for share in rows.scalars().all()[1:]:
                await session.delete(share)
                deleted += 1

        if deleted:
            await session.flush()
            logger.info("Removed %d duplicate share rows", deleted)
        return deleted
