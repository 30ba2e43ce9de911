"""FolderService — folder creation, materialized path upkeep, moves and renames.

Stateless service that receives the folder/file models at construction
and a session at call time.  Flushes but never commits: the caller's
transaction makes a move and its descendant rewrite atomic.

Structural checks raise ``ValidationError``; authorization is the
caller's job (see ``AccessEngine``).  Each move is split into
``validate_*`` and ``apply_*`` so callers can authorize in between.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .exceptions import NotFoundError, ValidationError
from .paths import ancestor_ids, folder_path, is_within, like_prefix, rebase

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.models.files import FileBase, FolderBase

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


def validate_name(name: str, field: str = "name") -> str:
    """Strip and check a display name; names are metadata, never path segments."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError.single(field, "Name must not be empty.")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError.single(field, f"Name must be at most {MAX_NAME_LENGTH} characters.")
    if "/" in cleaned or "\\" in cleaned or "\0" in cleaned:
        raise ValidationError.single(field, "Name contains invalid characters.")
    return cleaned


class FolderService:
    """Keeps ``Folder.path`` equal to ``parent.path + id + "/"`` for every folder."""

    def __init__(self, folder_model: type[FolderBase], file_model: type[FileBase]) -> None:
        self._folder_model = folder_model
        self._file_model = file_model

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_folder(
        self, session: AsyncSession, folder_id: str, *, for_update: bool = False
    ) -> FolderBase | None:
        model = self._folder_model
        query = select(model).where(model.id == folder_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_file(self, session: AsyncSession, file_id: str) -> FileBase | None:
        model = self._file_model
        result = await session.execute(select(model).where(model.id == file_id))
        return result.scalar_one_or_none()

    async def require_folder(self, session: AsyncSession, folder_id: str) -> FolderBase:
        folder = await self.get_folder(session, folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    async def require_file(self, session: AsyncSession, file_id: str) -> FileBase:
        file = await self.get_file(session, file_id)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}")
        return file

    async def folder_path_of(self, session: AsyncSession, folder_id: str | None) -> str | None:
        """Path of *folder_id*, or ``None`` for the root."""
        if folder_id is None:
            return None
        model = self._folder_model
        result = await session.execute(select(model.path).where(model.id == folder_id))
        return result.scalar_one_or_none()

    async def owners_of(
        self,
        session: AsyncSession,
        file_ids: Sequence[str] = (),
        folder_ids: Sequence[str] = (),
    ) -> set[str]:
        """Distinct owner ids of the given files and folders; unknown ids are ignored."""
        owners: set[str] = set()
        if file_ids:
            model = self._file_model
            result = await session.execute(
                select(model.owner_id).where(model.id.in_(list(file_ids)))  # type: ignore[union-attr]
            )
            owners.update(result.scalars().all())
        if folder_ids:
            fmodel = self._folder_model
            result = await session.execute(
                select(fmodel.owner_id).where(fmodel.id.in_(list(folder_ids)))  # type: ignore[union-attr]
            )
            owners.update(result.scalars().all())
        return owners

    async def has_trashed_ancestor(self, session: AsyncSession, path: str | None) -> bool:
        """True if any folder encoded in *path* (itself included) is soft-deleted.

        Ancestor ids come from the path itself, so this is one query at any depth.
        """
        ids = ancestor_ids(path)
        if not ids:
            return False
        model = self._folder_model
        result = await session.execute(
            select(func.count()).select_from(model).where(
                model.id.in_(ids),  # type: ignore[union-attr]
                model.deleted_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        return (result.scalar_one() or 0) > 0

    async def list_subtree(self, session: AsyncSession, path: str) -> list[FolderBase]:
        """Every folder whose path starts with *path* (the root folder included)."""
        model = self._folder_model
        result = await session.execute(
            select(model).where(model.path.like(like_prefix(path), escape="\\"))  # type: ignore[union-attr]
        )
        return [f for f in result.scalars().all() if is_within(f.path, path)]

    async def list_subtree_file_ids(self, session: AsyncSession, path: str) -> list[str]:
        """Ids of every file stored in a folder under *path*."""
        folder = self._folder_model
        file = self._file_model
        result = await session.execute(
            select(file.id)
            .join(folder, folder.id == file.folder_id)  # type: ignore[arg-type]
            .where(folder.path.like(like_prefix(path), escape="\\"))  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Name collisions (live and trashed rows both count)
    # ------------------------------------------------------------------

    async def _folder_name_taken(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_id: str | None,
        name: str,
        exclude_id: str | None = None,
    ) -> bool:
        model = self._folder_model
        query = select(model.id).where(model.owner_id == owner_id, model.name == name)
        if parent_id is None:
            query = query.where(model.parent_id.is_(None))  # type: ignore[union-attr]
        else:
            query = query.where(model.parent_id == parent_id)
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        result = await session.execute(query.limit(1))
        return result.first() is not None

    async def _file_name_taken(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None,
        name: str,
        exclude_id: str | None = None,
    ) -> bool:
        model = self._file_model
        query = select(model.id).where(model.owner_id == owner_id, model.name == name)
        if folder_id is None:
            query = query.where(model.folder_id.is_(None))  # type: ignore[union-attr]
        else:
            query = query.where(model.folder_id == folder_id)
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        result = await session.execute(query.limit(1))
        return result.first() is not None

    async def _flush_names(self, session: AsyncSession, field: str, message: str) -> None:
        """Flush, reporting a sibling-name unique constraint hit as a ``ValidationError``.

        Covers a concurrent insert that slipped past the ``_*_name_taken`` check.
        """
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ValidationError.single(field, message) from exc

    # ------------------------------------------------------------------
    # Create / rename
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> FolderBase:
        """Create a folder with its materialized path. Flushes but does not commit."""
        name = validate_name(name)
        parent_path: str | None = None
        if parent_id is not None:
            parent = await self.get_folder(session, parent_id)
            if parent is None:
                raise ValidationError.single("parent_id", "Parent folder does not exist.")
            if parent.is_trashed:
                raise ValidationError.single("parent_id", "Cannot create a folder in a trashed folder.")
            parent_path = parent.path

        if await self._folder_name_taken(session, owner_id, parent_id, name):
            raise ValidationError.single(
                "name", "A folder with the same name already exists in this location."
            )

        folder_id = str(uuid.uuid4())
        folder = self._folder_model(
            id=folder_id,
            owner_id=owner_id,
            parent_id=parent_id,
            name=name,
            path=folder_path(folder_id, parent_path),
        )
        session.add(folder)
        await self._flush_names(
            session, "name", "A folder with the same name already exists in this location."
        )
        logger.debug("Created folder %s at %s", folder.id, folder.path)
        return folder

    async def rename_folder(self, session: AsyncSession, folder: FolderBase, new_name: str) -> FolderBase:
        """Change the display name only. Id and path are untouched."""
        new_name = validate_name(new_name)
        if folder.is_trashed:
            raise ValidationError.single("folder", "Cannot rename a trashed folder.")
        if new_name == folder.name:
            return folder
        if await self._folder_name_taken(
            session, folder.owner_id, folder.parent_id, new_name, exclude_id=folder.id
        ):
            raise ValidationError.single(
                "name", "A folder with the same name already exists in this location."
            )
        folder.name = new_name
        folder.updated_at = datetime.now(UTC)
        await self._flush_names(
            session, "name", "A folder with the same name already exists in this location."
        )
        return folder

    async def rename_file(self, session: AsyncSession, file: FileBase, new_name: str) -> FileBase:
        new_name = validate_name(new_name)
        if file.is_trashed:
            raise ValidationError.single("file", "Cannot rename a trashed file.")
        if new_name == file.name:
            return file
        if await self._file_name_taken(
            session, file.owner_id, file.folder_id, new_name, exclude_id=file.id
        ):
            raise ValidationError.single(
                "name", "A file with the same name already exists in this folder."
            )
        file.name = new_name
        file.updated_at = datetime.now(UTC)
        await self._flush_names(
            session, "name", "A file with the same name already exists in this folder."
        )
        return file

    # ------------------------------------------------------------------
    # Move targets
    # ------------------------------------------------------------------

    async def resolve_target(
        self, session: AsyncSession, target_id: str | None, field: str
    ) -> FolderBase | None:
        """Load a move destination; ``None`` means the account root."""
        if target_id is None:
            return None
        target = await self.get_folder(session, target_id)
        if target is None:
            raise ValidationError.single(field, "Target folder does not exist.")
        if target.is_trashed:
            raise ValidationError.single(field, "Cannot move into a trashed folder.")
        return target

    # ------------------------------------------------------------------
    # File moves
    # ------------------------------------------------------------------

    async def validate_file_move(
        self, session: AsyncSession, file: FileBase, target: FolderBase | None
    ) -> bool:
        """Check a file move. Returns False when the move is a no-op."""
        if file.is_trashed:
            raise ValidationError.single("file", "Cannot move a trashed file.")
        target_id = target.id if target is not None else None
        if file.folder_id == target_id:
            return False
        if target is not None and target.is_trashed:
            raise ValidationError.single("folder_id", "Cannot move into a trashed folder.")
        if await self._file_name_taken(session, file.owner_id, target_id, file.name, exclude_id=file.id):
            raise ValidationError.single(
                "folder_id", "A file with the same name already exists in the target folder."
            )
        return True

    async def apply_file_move(
        self, session: AsyncSession, file: FileBase, target: FolderBase | None
    ) -> FileBase:
        file.folder_id = target.id if target is not None else None
        file.version += 1
        file.updated_at = datetime.now(UTC)
        await self._flush_names(
            session, "folder_id", "A file with the same name already exists in the target folder."
        )
        return file

    async def move_file(
        self, session: AsyncSession, file_id: str, target_folder_id: str | None
    ) -> FileBase:
        """Move a file to *target_folder_id* (``None`` = root) without authorization checks."""
        file = await self.require_file(session, file_id)
        target = await self.resolve_target(session, target_folder_id, "folder_id")
        if await self.validate_file_move(session, file, target):
            await self.apply_file_move(session, file, target)
        return file

    # ------------------------------------------------------------------
    # Folder moves
    # ------------------------------------------------------------------

    async def validate_folder_move(
        self, session: AsyncSession, folder: FolderBase, target: FolderBase | None
    ) -> bool:
        """Check a folder move. Returns False when the move is a no-op."""
        if folder.is_trashed:
            raise ValidationError.single("folder", "Cannot move a trashed folder.")
        target_id = target.id if target is not None else None
        if folder.parent_id == target_id:
            return False
        if target is not None:
            if target.id == folder.id:
                raise ValidationError.single("parent_id", "Cannot move a folder into itself.")
            if is_within(target.path, folder.path):
                raise ValidationError.single(
                    "parent_id", "Cannot move a folder into one of its descendants."
                )
            if target.is_trashed:
                raise ValidationError.single("parent_id", "Cannot move into a trashed folder.")
        if await self._folder_name_taken(
            session, folder.owner_id, target_id, folder.name, exclude_id=folder.id
        ):
            raise ValidationError.single(
                "parent_id", "A folder with the same name already exists in the target location."
            )
        return True

    async def apply_folder_move(
        self, session: AsyncSession, folder: FolderBase, target: FolderBase | None
    ) -> FolderBase:
        """Re-parent *folder* and rewrite its path and every descendant path.

        Descendants are found by the old path prefix and locked for update;
        each keeps its suffix below the moved folder.
        """
        old_path = folder.path
        new_path = folder_path(folder.id, target.path if target is not None else None)

        if old_path != new_path:
            model = self._folder_model
            result = await session.execute(
                select(model)
                .where(
                    model.path.like(like_prefix(old_path), escape="\\"),  # type: ignore[union-attr]
                    model.id != folder.id,
                )
                .with_for_update()
            )
            descendants = [d for d in result.scalars().all() if d.path.startswith(old_path)]
            for desc in descendants:
                desc.path = rebase(desc.path, old_path, new_path)
            logger.debug(
                "Moving folder %s: %s -> %s (%d descendants)",
                folder.id,
                old_path,
                new_path,
                len(descendants),
            )

        folder.parent_id = target.id if target is not None else None
        folder.path = new_path
        folder.updated_at = datetime.now(UTC)
        await self._flush_names(
            session,
            "parent_id",
            "A folder with the same name already exists in the target location.",
        )
        return folder

    async def move_folder(
        self, session: AsyncSession, folder_id: str, new_parent_id: str | None
    ) -> FolderBase:
        """Move a folder under *new_parent_id* (``None`` = root) without authorization checks."""
        folder = await self.get_folder(session, folder_id, for_update=True)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if new_parent_id == folder.id:
            raise ValidationError.single("parent_id", "Cannot move a folder into itself.")
        target = await self.resolve_target(session, new_parent_id, "parent_id")
        if await self.validate_folder_move(session, folder, target):
            await self.apply_folder_move(session, folder, target)
        return folder
