"""PermissionContext — preloaded, immutable access data for one request.

Built once by ``PermissionContextBuilder`` (or ``GuestAccessResolver``) and
passed explicitly to every check.  Every method here is an in-memory lookup:
the context holds no session and never touches the database.

Resolution order for a file:

1. trashed resource or trashed ancestor → deny
2. principal owns the resource → allow
3. principal is an admin → allow
4. a direct file share exists → its level, and nothing else is consulted
5. folder shares whose path prefixes the file's folder path →
   most permissive level wins (``edit`` over ``view``), regardless of depth
6. otherwise → deny
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .paths import is_within
from .permissions import Action, Decision, Permission, ResourceType


@dataclass(frozen=True, slots=True)
class FolderGrant:
    """An active folder share held by the principal, with the folder's current path."""

    folder_id: str
    path: str
    permission: Permission


@dataclass(frozen=True, slots=True)
class PermissionContext:
    """Immutable permission snapshot.

    Attributes:
        principal_id: Authenticated user id, or ``None`` for a guest.
        is_admin: System admin override.
        direct_file_shares: file id → permission, unexpired shares only.
        folder_shares: Unexpired folder shares with current paths.
        roles: Role names held by the principal.
        guest_share_id: Set on guest contexts to the share that scoped them.
    """

    principal_id: str | None
    is_admin: bool = False
    direct_file_shares: Mapping[str, Permission] = field(default_factory=dict)
    folder_shares: tuple[FolderGrant, ...] = ()
    roles: frozenset[str] = frozenset()
    guest_share_id: str | None = None

    def __post_init__(self) -> None:
        # Freeze the containers handed in by the builder
        object.__setattr__(
            self, "direct_file_shares", MappingProxyType(dict(self.direct_file_shares))
        )
        object.__setattr__(self, "folder_shares", tuple(self.folder_shares))
        object.__setattr__(self, "roles", frozenset(self.roles))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def anonymous(cls) -> PermissionContext:
        """A context that grants nothing."""
        return cls(principal_id=None)

    @classmethod
    def for_guest_file(cls, share_id: str, file_id: str, permission: Permission) -> PermissionContext:
        return cls(
            principal_id=None,
            direct_file_shares={file_id: permission},
            guest_share_id=share_id,
        )

    @classmethod
    def for_guest_folder(
        cls, share_id: str, folder_id: str, path: str, permission: Permission
    ) -> PermissionContext:
        return cls(
            principal_id=None,
            folder_shares=(FolderGrant(folder_id, path, permission),),
            guest_share_id=share_id,
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def is_guest(self) -> bool:
        return self.guest_share_id is not None

    def is_owner(self, owner_id: str | None) -> bool:
        return self.principal_id is not None and self.principal_id == owner_id

    def is_exempt(self, owner_id: str | None) -> bool:
        """Owners and admins bypass share checks and subtree boundaries."""
        return self.is_owner(owner_id) or self.is_admin

    # ------------------------------------------------------------------
    # Share resolution
    # ------------------------------------------------------------------

    def inherited_permission(self, folder_path: str | None) -> Permission | None:
        """Most permissive folder share covering *folder_path*, or ``None``."""
        if not folder_path:
            return None
        best: Permission | None = None
        for grant in self.folder_shares:
            if is_within(folder_path, grant.path):
                if grant.permission is Permission.EDIT:
                    return Permission.EDIT
                best = Permission.VIEW
        return best

    def effective_permission(
        self,
        file_id: str,
        owner_id: str | None,
        folder_path: str | None,
        *,
        trashed: bool = False,
    ) -> Permission | None:
        """Permission the principal holds on a file, or ``None``."""
        if trashed:
            return None
        if self.is_exempt(owner_id):
            return Permission.EDIT
        direct = self.direct_file_shares.get(file_id)
        if direct is not None:
            return direct
        return self.inherited_permission(folder_path)

    def effective_folder_permission(
        self,
        folder_id: str,
        owner_id: str | None,
        folder_path: str | None,
        *,
        trashed: bool = False,
    ) -> Permission | None:
        """Permission on a folder; a share on the folder itself matches by prefix equality."""
        if trashed:
            return None
        if self.is_exempt(owner_id):
            return Permission.EDIT
        inherited = self.inherited_permission(folder_path)
        if inherited is not None:
            return inherited
        # Fall back to id match in case the caller has no path loaded
        best: Permission | None = None
        for grant in self.folder_shares:
            if grant.folder_id == folder_id:
                if grant.permission is Permission.EDIT:
                    return Permission.EDIT
                best = Permission.VIEW
        return best

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def can_view(
        self, file_id: str, owner_id: str | None, folder_path: str | None, *, trashed: bool = False
    ) -> bool:
        return self.effective_permission(file_id, owner_id, folder_path, trashed=trashed) is not None

    def can_edit(
        self, file_id: str, owner_id: str | None, folder_path: str | None, *, trashed: bool = False
    ) -> bool:
        perm = self.effective_permission(file_id, owner_id, folder_path, trashed=trashed)
        return perm is Permission.EDIT

    def can_view_folder(
        self, folder_id: str, owner_id: str | None, folder_path: str | None, *, trashed: bool = False
    ) -> bool:
        perm = self.effective_folder_permission(folder_id, owner_id, folder_path, trashed=trashed)
        return perm is not None

    def can_edit_folder(
        self, folder_id: str, owner_id: str | None, folder_path: str | None, *, trashed: bool = False
    ) -> bool:
        perm = self.effective_folder_permission(folder_id, owner_id, folder_path, trashed=trashed)
        return perm is Permission.EDIT

    def edit_subtree_roots(self, path: str | None) -> tuple[str, ...]:
        """Paths of every ``edit`` folder share that covers *path*."""
        if not path:
            return ()
        return tuple(
            grant.path
            for grant in self.folder_shares
            if grant.permission is Permission.EDIT and is_within(path, grant.path)
        )

    def authorize(
        self,
        action: Action,
        resource_id: str,
        owner_id: str | None,
        folder_path: str | None,
        *,
        resource_type: ResourceType = ResourceType.FILE,
        trashed: bool = False,
    ) -> Decision:
        """Decide *action* on a resource.

        Trashed resources are ``NOT_FOUND``.  A guest with no access at all
        gets ``NOT_FOUND`` rather than ``DENY`` so the token never confirms
        that a resource outside its scope exists.
        """
        if trashed:
            return Decision.NOT_FOUND
        if resource_type is ResourceType.FOLDER:
            perm = self.effective_folder_permission(resource_id, owner_id, folder_path)
        else:
            perm = self.effective_permission(resource_id, owner_id, folder_path)
        if perm is None:
            return Decision.NOT_FOUND if self.is_guest else Decision.DENY
        if perm.includes(action.required):
            return Decision.ALLOW
        return Decision.DENY
