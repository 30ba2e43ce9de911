"""TrashService — soft-delete and restore for files and folder subtrees."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import ValidationError
from .paths import is_within, like_prefix

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from drivegate.models.files import FileBase, FolderBase


def _same_instant(a: datetime | None, b: datetime | None) -> bool:
    if a is None or b is None:
        return False
    # SQLite hands back naive datetimes
    if a.tzinfo is None:
        a = a.replace(tzinfo=UTC)
    if b.tzinfo is None:
        b = b.replace(tzinfo=UTC)
    return a == b


class TrashService:
    """Soft-delete management.

    Trashing a folder stamps ``deleted_at`` on the folder, every folder below
    it (by path prefix), and every file in those folders, with one shared
    timestamp.  Restore brings back exactly the rows stamped with it.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        file_model: type[FileBase],
        *,
        retention_days: int = 30,
    ) -> None:
        self._folder_model = folder_model
        self._file_model = file_model
        self._retention = timedelta(days=retention_days)

    async def trash_file(
        self, session: AsyncSession, file: FileBase, deleted_by: str | None
    ) -> FileBase:
        if file.is_trashed:
            return file
        now = datetime.now(UTC)
        file.deleted_at = now
        file.deleted_by = deleted_by
        file.purge_at = now + self._retention
        await session.flush()
        return file

    async def trash_folder(
        self, session: AsyncSession, folder: FolderBase, deleted_by: str | None
    ) -> int:
        """Trash *folder* and its whole subtree. Returns the number of rows stamped."""
        if folder.is_trashed:
            return 0
        now = datetime.now(UTC)
        purge_at = now + self._retention

        fmodel = self._folder_model
        result = await session.execute(
            select(fmodel).where(
                fmodel.path.like(like_prefix(folder.path), escape="\\"),  # type: ignore[union-attr]
                fmodel.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        folders = [f for f in result.scalars().all() if is_within(f.path, folder.path)]
        folder_ids = [f.id for f in folders]

        files: list[FileBase] = []
        if folder_ids:
            model = self._file_model
            file_result = await session.execute(
                select(model).where(
                    model.folder_id.in_(folder_ids),  # type: ignore[union-attr]
                    model.deleted_at.is_(None),  # type: ignore[union-attr]
                )
            )
            files = list(file_result.scalars().all())

        for row in [*folders, *files]:
            row.deleted_at = now
            row.deleted_by = deleted_by
            row.purge_at = purge_at

        await session.flush()
        return len(folders) + len(files)

    async def restore_file(self, session: AsyncSession, file: FileBase) -> FileBase:
        if not file.is_trashed:
            return file
        if file.folder_id is not None:
            parent = await session.get(self._folder_model, file.folder_id)
            if parent is not None and parent.is_trashed:
                raise ValidationError.single(
                    "folder_id", "Restore the parent folder before restoring this file."
                )
        file.deleted_at = None
        file.deleted_by = None
        file.purge_at = None
        await session.flush()
        return file

    async def restore_folder(self, session: AsyncSession, folder: FolderBase) -> int:
        """Restore *folder* and every row trashed together with it."""
        if not folder.is_trashed:
            return 0
        if folder.parent_id is not None:
            parent = await session.get(self._folder_model, folder.parent_id)
            if parent is not None and parent.is_trashed:
                raise ValidationError.single(
                    "parent_id", "Restore the parent folder before restoring this folder."
                )

        stamp = folder.deleted_at
        fmodel = self._folder_model
        result = await session.execute(
            select(fmodel).where(
                fmodel.path.like(like_prefix(folder.path), escape="\\"),  # type: ignore[union-attr]
                fmodel.deleted_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        folders = [
            f
            for f in result.scalars().all()
            if is_within(f.path, folder.path) and _same_instant(f.deleted_at, stamp)
        ]
        folder_ids = [f.id for f in folders]

        files: list[FileBase] = []
        if folder_ids:
            model = self._file_model
            file_result = await session.execute(
                select(model).where(
                    model.folder_id.in_(folder_ids),  # type: ignore[union-attr]
                    model.deleted_at.is_not(None),  # type: ignore[union-attr]
                )
            )
            files = [f for f in file_result.scalars().all() if _same_instant(f.deleted_at, stamp)]

        for row in [*folders, *files]:
            row.deleted_at = None
            row.deleted_by = None
            row.purge_at = None

        await session.flush()
        return len(folders) + len(files)

    async def list_trash(
        self, session: AsyncSession, owner_id: str
    ) -> tuple[list[FolderBase], list[FileBase]]:
        """Trashed folders and files owned by *owner_id*."""
        fmodel = self._folder_model
        model = self._file_model
        folders = await session.execute(
            select(fmodel).where(
                fmodel.owner_id == owner_id,
                fmodel.deleted_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        files = await session.execute(
            select(model).where(
                model.owner_id == owner_id,
                model.deleted_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        return list(folders.scalars().all()), list(files.scalars().all())
