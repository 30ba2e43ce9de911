"""AccessEngine — request-level facade wiring services, transactions, and events."""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drivegate.acl.activity import ActivityLogService
from drivegate.acl.builder import PermissionContextBuilder
from drivegate.acl.exceptions import (
    BulkOperationError,
    ConflictError,
    DrivegateError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    ValidationError,
)
from drivegate.acl.favorites import FavoriteService
from drivegate.acl.folders import FolderService
from drivegate.acl.guest import GuestAccessResolver
from drivegate.acl.permissions import Action, Decision, GuestStatus, ResourceType
from drivegate.acl.shares import ShareService
from drivegate.acl.subtree import SubtreeAuthorizer
from drivegate.acl.tags import TagService
from drivegate.acl.trash import TrashService
from drivegate.acl.types import BulkResult
from drivegate.config import EngineConfig, ModelSet
from drivegate.events import EventBus, EventType, ResourceEvent

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from drivegate.acl.context import PermissionContext
    from drivegate.acl.permissions import Permission
    from drivegate.acl.types import GuestResolution, Principal, RevokedShare, ShareResult
    from drivegate.models.files import FileBase, FolderBase
    from drivegate.models.shares import ShareBase
    from drivegate.models.tags import TagBase, UserFavoriteBase

logger = logging.getLogger(__name__)


class AccessEngine:
    """Authorization and folder-tree operations over one database.

    Every public coroutine opens its own session, runs in one transaction,
    and emits events after the commit::

        engine = create_async_engine("sqlite+aiosqlite://")
        gate = AccessEngine.from_engine(engine)
        await gate.create_tables()

        ctx = await gate.build_context(Principal("bob"))
        await gate.move_folder(ctx, folder_id, new_parent_id)

    A ``PermissionContext`` is built per request and passed to every call.
    Nothing is cached between calls.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
        models: ModelSet | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._config = config or EngineConfig()
        self._event_bus = event_bus or EventBus()
        self._models = models or ModelSet()
        # Entries vanish once no task holds or awaits the lock
        self._move_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        m = self._models
        self._folders = FolderService(m.folder, m.file)
        self._shares = ShareService(m.share, token_bytes=self._config.token_bytes)
        self._builder = PermissionContextBuilder(
            m.share, m.folder, m.role, admin_role=self._config.admin_role
        )
        self._trash = TrashService(
            m.folder, m.file, retention_days=self._config.trash_retention_days
        )
        self._favorites = FavoriteService(m.favorite)
        self._tags = TagService(m.tag, m.taggable)
        self._activity = ActivityLogService(m.activity)
        self._guest = GuestAccessResolver(
            self._shares,
            self._folders,
            self._activity,
            view_action=self._config.guest_view_action,
        )
        self._subtree = SubtreeAuthorizer()

    @classmethod
    def from_engine(
        cls,
        engine: AsyncEngine,
        *,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
        models: ModelSet | None = None,
    ) -> AccessEngine:
        """Build an engine with a default session factory bound to *engine*."""
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(factory, engine=engine, config=config, event_bus=event_bus, models=models)

    async def create_tables(self) -> None:
        """Create every table this engine uses, skipping existing ones."""
        if self._engine is None:
            raise RuntimeError("create_tables() needs an engine; use AccessEngine.from_engine()")
        async with self._engine.begin() as conn:
            for model in self._models.tables():
                await conn.run_sync(
                    lambda c, t=model.__table__: t.create(c, checkfirst=True)  # type: ignore[attr-defined]
                )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def models(self) -> ModelSet:
        return self._models

    @property
    def folders(self) -> FolderService:
        return self._folders

    @property
    def shares(self) -> ShareService:
        return self._shares

    # ------------------------------------------------------------------
    # Session / lock helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        """One transaction: commit on success, rollback on error, always close."""
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    def _owner_lock(self, owner_id: str) -> asyncio.Lock:
        lock = self._move_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._move_locks[owner_id] = lock
        return lock

    @asynccontextmanager
    async def _move_guard(
        self, file_ids: Sequence[str] = (), folder_ids: Sequence[str] = ()
    ) -> AsyncGenerator[None]:
        """Hold the move lock of every owner involved, in a fixed order."""
        async with self._session() as session:
            owners = await self._folders.owners_of(session, file_ids, folder_ids)
        async with AsyncExitStack() as stack:
            for owner_id in sorted(owners):
                await stack.enter_async_context(self._owner_lock(owner_id))
            yield

    async def _emit(self, events: Sequence[ResourceEvent]) -> None:
        for event in events:
            await self._event_bus.emit(event)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def build_context(self, principal: Principal) -> PermissionContext:
        """Load a fresh permission context for an authenticated principal."""
        async with self._session() as session:
            return await self._builder.build(session, principal)

    async def resolve_guest_token(self, raw_token: str) -> GuestResolution:
        """Resolve a raw guest token to a scoped context, ``NOT_FOUND`` or ``GONE``."""
        async with self._session() as session:
            return await self._guest.resolve(session, raw_token)

    async def guest_context(self, raw_token: str) -> PermissionContext:
        """Like ``resolve_guest_token`` but raises ``NotFoundError`` or ``GoneError``."""
        resolution = await self.resolve_guest_token(raw_token)
        if resolution.status is GuestStatus.GONE:
            raise GoneError("This link has expired.")
        if resolution.context is None:
            raise NotFoundError("Link not found.")
        return resolution.context

    def authorize(
        self,
        context: PermissionContext,
        action: Action,
        resource_id: str,
        owner_id: str | None,
        folder_path: str | None,
        *,
        resource_type: ResourceType = ResourceType.FILE,
        trashed: bool = False,
    ) -> Decision:
        """Pure decision from preloaded data. Never touches the database."""
        return context.authorize(
            action,
            resource_id,
            owner_id,
            folder_path,
            resource_type=resource_type,
            trashed=trashed,
        )

    def authorize_subtree_move(
        self,
        context: PermissionContext,
        owner_id: str | None,
        source_path: str | None,
        dest_path: str | None,
    ) -> Decision:
        return self._subtree.authorize_move(context, owner_id, source_path, dest_path)

    async def check_file(self, context: PermissionContext, action: Action, file_id: str) -> FileBase:
        """Load a file the context may perform *action* on, or raise."""
        async with self._session() as session:
            file, _ = await self._load_file_for(session, context, file_id, action)
            return file

    async def check_folder(
        self, context: PermissionContext, action: Action, folder_id: str
    ) -> FolderBase:
        """Load a folder the context may perform *action* on, or raise."""
        async with self._session() as session:
            return await self._load_folder_for(session, context, folder_id, action)

    @staticmethod
    def _raise_for(decision: Decision, kind: str, resource_id: str) -> None:
        if decision is Decision.NOT_FOUND:
            raise NotFoundError(f"{kind.capitalize()} not found: {resource_id}")
        if decision is Decision.DENY:
            raise ForbiddenError(f"Not allowed to access {kind} {resource_id}")

    async def _load_file_for(
        self,
        session: AsyncSession,
        context: PermissionContext,
        file_id: str,
        action: Action,
    ) -> tuple[FileBase, str | None]:
        """Return the file and its folder path once *action* is allowed."""
        file = await self._folders.require_file(session, file_id)
        path = await self._folders.folder_path_of(session, file.folder_id)
        trashed = file.is_trashed or await self._folders.has_trashed_ancestor(session, path)
        decision = context.authorize(action, file.id, file.owner_id, path, trashed=trashed)
        self._raise_for(decision, "file", file_id)
        return file, path

    async def _load_folder_for(
        self,
        session: AsyncSession,
        context: PermissionContext,
        folder_id: str,
        action: Action,
    ) -> FolderBase:
        folder = await self._folders.require_folder(session, folder_id)
        trashed = await self._folders.has_trashed_ancestor(session, folder.path)
        decision = context.authorize(
            action,
            folder.id,
            folder.owner_id,
            folder.path,
            resource_type=ResourceType.FOLDER,
            trashed=trashed,
        )
        self._raise_for(decision, "folder", folder_id)
        return folder

    def _require_principal(self, context: PermissionContext) -> str:
        if context.principal_id is None:
            raise ForbiddenError("This operation needs an authenticated user.")
        return context.principal_id

    def _require_exempt(self, context: PermissionContext, owner_id: str, message: str) -> None:
        if not context.is_exempt(owner_id):
            raise ForbiddenError(message)

    # ------------------------------------------------------------------
    # Folders: create / rename
    # ------------------------------------------------------------------

    async def create_folder(
        self, context: PermissionContext, name: str, parent_id: str | None = None
    ) -> FolderBase:
        """Create a folder at the principal's root, or inside a folder it can edit.

        A folder created inside a shared folder belongs to that folder's owner.
        """
        async with self._session() as session:
            if parent_id is None:
                owner_id = self._require_principal(context)
            else:
                parent = await self._load_folder_for(session, context, parent_id, Action.CREATE)
                owner_id = parent.owner_id
            folder = await self._folders.create_folder(session, owner_id, name, parent_id)
        await self._emit(
            [
                ResourceEvent(
                    EventType.FOLDER_CREATED,
                    "folder",
                    folder.id,
                    user_id=context.principal_id,
                    owner_id=folder.owner_id,
                    details={"parent_id": parent_id, "path": folder.path},
                )
            ]
        )
        return folder

    async def rename_folder(
        self, context: PermissionContext, folder_id: str, new_name: str
    ) -> FolderBase:
        async with self._session() as session:
            folder = await self._load_folder_for(session, context, folder_id, Action.RENAME)
            old_name = folder.name
            await self._folders.rename_folder(session, folder, new_name)
        if folder.name != old_name:
            await self._emit(
                [self._renamed_event(context, "folder", folder.id, folder.owner_id, old_name, folder.name)]
            )
        return folder

    async def rename_file(self, context: PermissionContext, file_id: str, new_name: str) -> FileBase:
        async with self._session() as session:
            file, _ = await self._load_file_for(session, context, file_id, Action.RENAME)
            old_name = file.name
            await self._folders.rename_file(session, file, new_name)
        if file.name != old_name:
            await self._emit(
                [self._renamed_event(context, "file", file.id, file.owner_id, old_name, file.name)]
            )
        return file

    @staticmethod
    def _renamed_event(
        context: PermissionContext,
        resource_type: str,
        resource_id: str,
        owner_id: str,
        old_name: str,
        new_name: str,
    ) -> ResourceEvent:
        return ResourceEvent(
            EventType.RESOURCE_RENAMED,
            resource_type,
            resource_id,
            user_id=context.principal_id,
            owner_id=owner_id,
            details={"old_name": old_name, "new_name": new_name},
        )

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    @staticmethod
    def _require_target_edit(context: PermissionContext, target: FolderBase | None) -> None:
        if target is None:
            return
        if not context.can_edit_folder(target.id, target.owner_id, target.path):
            raise ForbiddenError(f"Not allowed to edit target folder {target.id}")

    @staticmethod
    def _require_same_owner(owner_id: str, target: FolderBase | None, field: str) -> None:
        if target is not None and target.owner_id != owner_id:
            raise ValidationError.single(field, "Target folder belongs to a different owner.")

    async def _plan_file_move(
        self,
        session: AsyncSession,
        context: PermissionContext,
        file_id: str,
        target_id: str | None,
    ) -> tuple[FileBase, FolderBase | None, bool]:
        """Authorize and validate a file move without applying it.

        The flag is False when the file already lives in the target.
        """
        file, source_path = await self._load_file_for(session, context, file_id, Action.MOVE)
        target = await self._folders.resolve_target(session, target_id, "folder_id")
        if file.folder_id == target_id:
            return file, target, False
        self._require_target_edit(context, target)
        if not await self._folders.validate_file_move(session, file, target):
            return file, target, False
        self._subtree.assert_move_allowed(
            context, file.owner_id, source_path, target.path if target is not None else None
        )
        self._require_same_owner(file.owner_id, target, "folder_id")
        return file, target, True

    async def _plan_folder_move(
        self,
        session: AsyncSession,
        context: PermissionContext,
        folder_id: str,
        target_id: str | None,
    ) -> tuple[FolderBase, FolderBase | None, bool]:
        folder = await self._load_folder_for(session, context, folder_id, Action.MOVE)
        target = await self._folders.resolve_target(session, target_id, "parent_id")
        if folder.parent_id == target_id:
            return folder, target, False
        self._require_target_edit(context, target)
        if not await self._folders.validate_folder_move(session, folder, target):
            return folder, target, False
        self._subtree.assert_move_allowed(
            context, folder.owner_id, folder.path, target.path if target is not None else None
        )
        self._require_same_owner(folder.owner_id, target, "parent_id")
        return folder, target, True

    @staticmethod
    def _moved_event(
        context: PermissionContext,
        resource_type: str,
        resource_id: str,
        owner_id: str,
        old_parent: str | None,
        new_parent: str | None,
    ) -> ResourceEvent:
        return ResourceEvent(
            EventType.RESOURCE_MOVED,
            resource_type,
            resource_id,
            user_id=context.principal_id,
            owner_id=owner_id,
            details={"old_parent_id": old_parent, "new_parent_id": new_parent},
        )

    async def move_file(
        self, context: PermissionContext, file_id: str, target_folder_id: str | None
    ) -> FileBase:
        """Move a file into *target_folder_id* (``None`` = the owner's root).

        Checks, in order: the file is visible and not trashed (404), the
        principal may move it (403), the target exists and is live (422),
        the principal may edit the target (403), no name collision (422),
        the move stays inside the shared subtree (403), and the target has
        the same owner as the file (422).
        """
        async with self._move_guard(file_ids=[file_id]), self._session() as session:
            file, target, changed = await self._plan_file_move(
                session, context, file_id, target_folder_id
            )
            if not changed:
                return file
            old_parent = file.folder_id
            await self._folders.apply_file_move(session, file, target)
        await self._emit(
            [self._moved_event(context, "file", file.id, file.owner_id, old_parent, file.folder_id)]
        )
        return file

    async def move_folder(
        self, context: PermissionContext, folder_id: str, new_parent_id: str | None
    ) -> FolderBase:
        """Move a folder and rewrite every descendant path in one transaction."""
        async with self._move_guard(folder_ids=[folder_id]), self._session() as session:
            folder, target, changed = await self._plan_folder_move(
                session, context, folder_id, new_parent_id
            )
            if not changed:
                return folder
            old_parent = folder.parent_id
            await self._folders.apply_folder_move(session, folder, target)
        await self._emit(
            [
                self._moved_event(
                    context, "folder", folder.id, folder.owner_id, old_parent, folder.parent_id
                )
            ]
        )
        return folder

    async def bulk_move(
        self,
        context: PermissionContext,
        target_folder_id: str | None,
        *,
        file_ids: Sequence[str] = (),
        folder_ids: Sequence[str] = (),
    ) -> BulkResult:
        """Move many files and folders at once. All or nothing.

        Every member is authorized and validated before anything changes;
        the first failure raises ``BulkOperationError`` naming that member.
        """
        result = BulkResult()
        events: list[ResourceEvent] = []
        async with (
            self._move_guard(file_ids=file_ids, folder_ids=folder_ids),
            self._session() as session,
        ):
            file_plans: list[tuple[FileBase, FolderBase | None]] = []
            for file_id in dict.fromkeys(file_ids):
                try:
                    file, target, changed = await self._plan_file_move(
                        session, context, file_id, target_folder_id
                    )
                except DrivegateError as exc:
                    raise BulkOperationError(file_id, exc) from exc
                if changed:
                    file_plans.append((file, target))
                else:
                    result.skipped.append(file_id)

            folder_plans: list[tuple[FolderBase, FolderBase | None]] = []
            for folder_id in dict.fromkeys(folder_ids):
                try:
                    folder, target, changed = await self._plan_folder_move(
                        session, context, folder_id, target_folder_id
                    )
                except DrivegateError as exc:
                    raise BulkOperationError(folder_id, exc) from exc
                if changed:
                    folder_plans.append((folder, target))
                else:
                    result.skipped.append(folder_id)

            for file, target in file_plans:
                old_parent = file.folder_id
                await self._folders.apply_file_move(session, file, target)
                events.append(
                    self._moved_event(
                        context, "file", file.id, file.owner_id, old_parent, target_folder_id
                    )
                )
                result.files += 1
            for folder, target in folder_plans:
                old_parent = folder.parent_id
                await self._folders.apply_folder_move(session, folder, target)
                events.append(
                    self._moved_event(
                        context, "folder", folder.id, folder.owner_id, old_parent, target_folder_id
                    )
                )
                result.folders += 1

        logger.debug(
            "Bulk move by %s: %d files, %d folders, %d skipped",
            context.principal_id,
            result.files,
            result.folders,
            len(result.skipped),
        )
        await self._emit(events)
        return result

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    def _trashed_event(
        self, context: PermissionContext, resource_type: str, resource: Any, count: int = 1
    ) -> ResourceEvent:
        return ResourceEvent(
            EventType.RESOURCE_TRASHED,
            resource_type,
            resource.id,
            user_id=context.principal_id,
            owner_id=resource.owner_id,
            details={"count": count},
        )

    async def trash_file(self, context: PermissionContext, file_id: str) -> FileBase:
        async with self._session() as session:
            file, _ = await self._load_file_for(session, context, file_id, Action.DELETE)
            await self._trash.trash_file(session, file, context.principal_id)
        await self._emit([self._trashed_event(context, "file", file)])
        return file

    async def trash_folder(self, context: PermissionContext, folder_id: str) -> int:
        """Trash a folder with everything below it. Returns the rows stamped."""
        async with self._session() as session:
            folder = await self._load_folder_for(session, context, folder_id, Action.DELETE)
            count = await self._trash.trash_folder(session, folder, context.principal_id)
        await self._emit([self._trashed_event(context, "folder", folder, count)])
        return count

    async def bulk_delete(
        self,
        context: PermissionContext,
        *,
        file_ids: Sequence[str] = (),
        folder_ids: Sequence[str] = (),
    ) -> BulkResult:
        """Trash many files and folders at once. All or nothing."""
        result = BulkResult()
        events: list[ResourceEvent] = []
        async with self._session() as session:
            files: list[FileBase] = []
            for file_id in dict.fromkeys(file_ids):
                try:
                    file, _ = await self._load_file_for(session, context, file_id, Action.DELETE)
                except DrivegateError as exc:
                    raise BulkOperationError(file_id, exc) from exc
                files.append(file)

            folders: list[FolderBase] = []
            for folder_id in dict.fromkeys(folder_ids):
                try:
                    folder = await self._load_folder_for(session, context, folder_id, Action.DELETE)
                except DrivegateError as exc:
                    raise BulkOperationError(folder_id, exc) from exc
                folders.append(folder)

            # Outermost folders first so everything below shares their stamp
            # and comes back with them on restore
            for folder in sorted(folders, key=lambda f: f.path.count("/")):
                if folder.is_trashed:
                    # Already stamped by a folder earlier in this batch
                    result.skipped.append(folder.id)
                    continue
                count = await self._trash.trash_folder(session, folder, context.principal_id)
                events.append(self._trashed_event(context, "folder", folder, count))
                result.folders += 1
            for file in files:
                if file.is_trashed:
                    result.skipped.append(file.id)
                    continue
                await self._trash.trash_file(session, file, context.principal_id)
                events.append(self._trashed_event(context, "file", file))
                result.files += 1

        await self._emit(events)
        return result

    async def restore_file(self, context: PermissionContext, file_id: str) -> FileBase:
        """Bring a file back from the trash. Owner or admin only."""
        async with self._session() as session:
            file = await self._folders.require_file(session, file_id)
            self._require_exempt(context, file.owner_id, "Only the owner can restore this file.")
            await self._trash.restore_file(session, file)
        await self._emit([self._restored_event(context, "file", file.id, file.owner_id, 1)])
        return file

    async def restore_folder(self, context: PermissionContext, folder_id: str) -> int:
        """Restore a folder and every row trashed with it. Owner or admin only."""
        async with self._session() as session:
            folder = await self._folders.require_folder(session, folder_id)
            self._require_exempt(context, folder.owner_id, "Only the owner can restore this folder.")
            count = await self._trash.restore_folder(session, folder)
        await self._emit([self._restored_event(context, "folder", folder.id, folder.owner_id, count)])
        return count

    @staticmethod
    def _restored_event(
        context: PermissionContext, resource_type: str, resource_id: str, owner_id: str, count: int
    ) -> ResourceEvent:
        return ResourceEvent(
            EventType.RESOURCE_RESTORED,
            resource_type,
            resource_id,
            user_id=context.principal_id,
            owner_id=owner_id,
            details={"count": count},
        )

    async def list_trash(
        self, context: PermissionContext
    ) -> tuple[list[FolderBase], list[FileBase]]:
        user_id = self._require_principal(context)
        async with self._session() as session:
            return await self._trash.list_trash(session, user_id)

    # ------------------------------------------------------------------
    # Favorites and tags
    # ------------------------------------------------------------------

    async def _require_viewable(
        self,
        session: AsyncSession,
        context: PermissionContext,
        file_ids: Sequence[str],
        folder_ids: Sequence[str],
    ) -> None:
        for file_id in file_ids:
            try:
                await self._load_file_for(session, context, file_id, Action.VIEW)
            except DrivegateError as exc:
                raise BulkOperationError(file_id, exc) from exc
        for folder_id in folder_ids:
            try:
                await self._load_folder_for(session, context, folder_id, Action.VIEW)
            except DrivegateError as exc:
                raise BulkOperationError(folder_id, exc) from exc

    async def bulk_favorite(
        self,
        context: PermissionContext,
        *,
        file_ids: Sequence[str] = (),
        folder_ids: Sequence[str] = (),
    ) -> BulkResult:
        """Favorite every listed resource the principal can view. All or nothing."""
        user_id = self._require_principal(context)
        async with self._session() as session:
            await self._require_viewable(session, context, file_ids, folder_ids)
            files = await self._favorites.bulk_add(session, user_id, ResourceType.FILE, file_ids)
            folders = await self._favorites.bulk_add(
                session, user_id, ResourceType.FOLDER, folder_ids
            )
        return BulkResult(files=files, folders=folders)

    async def list_favorites(
        self, context: PermissionContext, resource_type: ResourceType | None = None
    ) -> list[UserFavoriteBase]:
        user_id = self._require_principal(context)
        async with self._session() as session:
            return await self._favorites.list_for_user(session, user_id, resource_type)

    async def create_tag(
        self, context: PermissionContext, name: str, color: str | None = None
    ) -> TagBase:
        user_id = self._require_principal(context)
        async with self._session() as session:
            return await self._tags.create_tag(session, user_id, name, color)

    async def bulk_tag(
        self,
        context: PermissionContext,
        tag_ids: Sequence[str],
        *,
        file_ids: Sequence[str] = (),
        folder_ids: Sequence[str] = (),
    ) -> BulkResult:
        """Attach the principal's tags to every listed resource. All or nothing."""
        user_id = self._require_principal(context)
        async with self._session() as session:
            tags = await self._tags.resolve_tags(session, user_id, tag_ids)
            await self._require_viewable(session, context, file_ids, folder_ids)
            files = await self._tags.assign(session, tags, ResourceType.FILE, file_ids)
            folders = await self._tags.assign(session, tags, ResourceType.FOLDER, folder_ids)
        return BulkResult(files=files, folders=folders)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    async def share_file(
        self,
        context: PermissionContext,
        file_id: str,
        *,
        shared_with: str | None = None,
        permission: str | Permission = "view",
        expires_at: datetime | None = None,
        notes: str | None = None,
    ) -> ShareResult:
        """Share a file with a user, or create a guest link when *shared_with* is None."""
        return await self._share(
            context,
            ResourceType.FILE,
            file_id,
            shared_with=shared_with,
            permission=permission,
            expires_at=expires_at,
            notes=notes,
        )

    async def share_folder(
        self,
        context: PermissionContext,
        folder_id: str,
        *,
        shared_with: str | None = None,
        permission: str | Permission = "view",
        expires_at: datetime | None = None,
        notes: str | None = None,
    ) -> ShareResult:
        """Share a folder (and so its whole subtree) with a user or as a guest link."""
        return await self._share(
            context,
            ResourceType.FOLDER,
            folder_id,
            shared_with=shared_with,
            permission=permission,
            expires_at=expires_at,
            notes=notes,
        )

    async def _share(
        self,
        context: PermissionContext,
        resource_type: ResourceType,
        resource_id: str,
        **fields: Any,
    ) -> ShareResult:
        """Upsert a share, retrying once if a concurrent request inserted the same row.

        The retry runs in a fresh transaction, finds that row, and updates it.
        """
        try:
            result, owner_id = await self._upsert_share_once(
                context, resource_type, resource_id, **fields
            )
        except ConflictError:
            logger.debug(
                "Share on %s %s raced a concurrent insert; retrying",
                resource_type.value,
                resource_id,
            )
            result, owner_id = await self._upsert_share_once(
                context, resource_type, resource_id, **fields
            )
        await self._emit([self._share_event(context, result, owner_id)])
        return result

    async def _upsert_share_once(
        self,
        context: PermissionContext,
        resource_type: ResourceType,
        resource_id: str,
        **fields: Any,
    ) -> tuple[ShareResult, str]:
        async with self._session() as session:
            resource: FileBase | FolderBase
            if resource_type is ResourceType.FILE:
                resource, _ = await self._load_file_for(session, context, resource_id, Action.VIEW)
            else:
                resource = await self._load_folder_for(session, context, resource_id, Action.VIEW)
            self._require_exempt(
                context, resource.owner_id, f"Only the owner can share this {resource_type.value}."
            )
            target = "file_id" if resource_type is ResourceType.FILE else "folder_id"
            result = await self._shares.upsert_share(
                session,
                shared_by=context.principal_id or resource.owner_id,
                **{target: resource.id},
                **fields,
            )
        return result, resource.owner_id

    @staticmethod
    def _share_event(context: PermissionContext, result: ShareResult, owner_id: str) -> ResourceEvent:
        share = result.share
        return ResourceEvent(
            EventType.SHARE_CREATED,
            "share",
            share.id,
            user_id=context.principal_id,
            owner_id=owner_id,
            details={
                "created": result.created,
                "file_id": share.file_id,
                "folder_id": share.folder_id,
                "shared_with": share.shared_with,
                "permission": share.permission,
            },
        )

    async def _share_owner(self, session: AsyncSession, share: ShareBase) -> str | None:
        """Owner of the shared resource, or ``None`` if the resource is gone."""
        if share.file_id is not None:
            file = await self._folders.get_file(session, share.file_id)
            return file.owner_id if file is not None else None
        assert share.folder_id is not None
        folder = await self._folders.get_folder(session, share.folder_id)
        return folder.owner_id if folder is not None else None

    async def _require_share(self, session: AsyncSession, share_id: str) -> ShareBase:
        share = await self._shares.get_share(session, share_id)
        if share is None:
            raise NotFoundError(f"Share not found: {share_id}")
        return share

    async def update_share(
        self,
        context: PermissionContext,
        share_id: str,
        *,
        permission: str | Permission | None = None,
        expires_at: datetime | None = None,
        clear_expiry: bool = False,
        notes: str | None = None,
    ) -> ShareBase:
        async with self._session() as session:
            share = await self._require_share(session, share_id)
            owner_id = await self._share_owner(session, share)
            if not (context.is_admin or context.is_owner(owner_id) or context.is_owner(share.shared_by)):
                raise ForbiddenError("Only the owner can change this share.")
            return await self._shares.update_share(
                session,
                share,
                permission=permission,
                expires_at=expires_at,
                clear_expiry=clear_expiry,
                notes=notes,
            )

    async def revoke_share(self, context: PermissionContext, share_id: str) -> RevokedShare:
        """Delete a share, then clean the former recipient's favorites and tags.

        The owner, the sharer, an admin, or the recipient (leaving the share)
        may revoke.  Cleanup runs in its own transaction after the revoke
        commits; a cleanup failure is logged and the revoke stands.
        """
        async with self._session() as session:
            share = await self._require_share(session, share_id)
            owner_id = await self._share_owner(session, share)
            allowed = (
                context.is_admin
                or context.is_owner(owner_id)
                or context.is_owner(share.shared_by)
                or context.is_owner(share.shared_with)
            )
            if not allowed:
                raise ForbiddenError("Not allowed to revoke this share.")
            revoked = await self._shares.revoke(session, share_id)

        try:
            async with self._session() as session:
                await self._shares.cleanup_recipient_metadata(
                    session,
                    revoked,
                    folders=self._folders,
                    favorites=self._favorites,
                    tags=self._tags,
                )
        except Exception:
            logger.warning(
                "Metadata cleanup failed after revoking share %s", revoked.share_id, exc_info=True
            )

        await self._emit(
            [
                ResourceEvent(
                    EventType.SHARE_REVOKED,
                    "share",
                    revoked.share_id,
                    user_id=context.principal_id,
                    owner_id=owner_id,
                    details={
                        "resource_type": revoked.resource_type.value,
                        "resource_id": revoked.resource_id,
                        "shared_with": revoked.shared_with,
                    },
                )
            ]
        )
        return revoked

    async def list_shared_with_me(self, context: PermissionContext) -> list[ShareBase]:
        user_id = self._require_principal(context)
        async with self._session() as session:
            return await self._shares.list_shared_with(session, user_id)

    async def list_shared_by_me(self, context: PermissionContext) -> list[ShareBase]:
        user_id = self._require_principal(context)
        async with self._session() as session:
            return await self._shares.list_shared_by(session, user_id)

    async def list_shares(
        self, context: PermissionContext, resource_type: ResourceType, resource_id: str
    ) -> list[ShareBase]:
        """Every share on a resource. Owner or admin only."""
        async with self._session() as session:
            if resource_type is ResourceType.FILE:
                file, _ = await self._load_file_for(session, context, resource_id, Action.VIEW)
                owner_id = file.owner_id
            else:
                folder = await self._load_folder_for(session, context, resource_id, Action.VIEW)
                owner_id = folder.owner_id
            self._require_exempt(context, owner_id, "Only the owner can list shares.")
            return await self._shares.list_shares_on_resource(session, resource_type, resource_id)

    async def cleanup_duplicate_shares(self) -> int:
        """Collapse duplicate share rows, keeping the newest. Safe to re-run."""
        async with self._session() as session:
            return await self._shares.cleanup_duplicate_guest_links(session)
