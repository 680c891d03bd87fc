"""
Store collaborator contract.

The authorization core only reads through the methods on `AuthzStore`; HTTP
consumers perform their writes through `Store`. Records handed out are
immutable snapshots, valid for one decision only.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Iterable, Optional, Protocol, Sequence, Tuple, Union

from hearth.auth.permissions import PermissionSet

UserRef = Union[str, uuid.UUID]


@dataclass(frozen=True)
class TenantRecord:
    id: uuid.UUID
    owner_id: uuid.UUID
    default_role_id: uuid.UUID
    name: str = ""
    # compatibility path: older tenants listed member ids inline
    legacy_member_ids: FrozenSet[uuid.UUID] = frozenset()


@dataclass(frozen=True)
class RoleRecord:
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    color: str
    position: int
    is_default: bool = False
    permissions: PermissionSet = field(default_factory=PermissionSet)


@dataclass(frozen=True)
class MembershipRecord:
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    role_ids: FrozenSet[uuid.UUID] = frozenset()
    joined_at: Optional[datetime] = None
    nickname: Optional[str] = None


@dataclass(frozen=True)
class BanRecord:
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    banned_by: Optional[uuid.UUID] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None


RolePosition = Tuple[uuid.UUID, int]


class AuthzStore(Protocol):
    async def normalize_user_id(self, ref: UserRef) -> Optional[uuid.UUID]:
        """Map an application id or store-internal id to the canonical user id."""
        ...

    async def get_tenant(self, tenant_id: uuid.UUID) -> Optional[TenantRecord]:
        ...

    async def get_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> Optional[MembershipRecord]:
        ...

    async def list_roles(self, tenant_id: uuid.UUID) -> Sequence[RoleRecord]:
        """Roles ordered by ascending position."""
        ...

    async def get_role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> Optional[RoleRecord]:
        ...


class Store(AuthzStore, Protocol):
    async def mutate_role_positions(self, tenant_id: uuid.UUID, positions: Iterable[RolePosition]) -> None:
        ...

    async def mutate_membership_roles(
        self, tenant_id: uuid.UUID, user_id: uuid.UUID, role_ids: Iterable[uuid.UUID]
    ) -> MembershipRecord:
        """Replace a member's roles. The default role id is always kept."""
        ...

    async def delete_role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> None:
        """Delete the role and pull its id out of every membership."""
        ...

    async def create_tenant(self, name: str, owner_id: uuid.UUID) -> TenantRecord:
        """Tenant, default role and owner membership in one unit of work."""
        ...

    async def create_role(
        self,
        tenant_id: uuid.UUID,
        name: str,
        color: str,
        permissions: PermissionSet,
    ) -> RoleRecord:
        ...

    async def update_role(
        self,
        tenant_id: uuid.UUID,
        role_id: uuid.UUID,
        *,
        name: Optional[str] = None,
        color: Optional[str] = None,
        permissions: Optional[PermissionSet] = None,
    ) -> RoleRecord:
        ...

    async def add_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> MembershipRecord:
        ...

    async def list_memberships(self, tenant_id: uuid.UUID) -> Sequence[MembershipRecord]:
        ...

    async def remove_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> None:
        ...

    async def update_nickname(
        self, tenant_id: uuid.UUID, user_id: uuid.UUID, nickname: Optional[str]
    ) -> MembershipRecord:
        """Set or clear (None) a member's tenant nickname."""
        ...

    async def ban_member(
        self, tenant_id: uuid.UUID, user_id: uuid.UUID, banned_by: uuid.UUID, reason: Optional[str] = None
    ) -> None:
        ...

    async def unban_member(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> None:
        ...

    async def list_bans(self, tenant_id: uuid.UUID) -> Sequence[BanRecord]:
        ...
