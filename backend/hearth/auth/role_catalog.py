from __future__ import annotations

import uuid
from typing import Dict, Iterable, Iterator, Optional, Sequence

from hearth.auth.store import AuthzStore, RoleRecord


class RoleCatalog:
    """
    Ordered roles of one tenant, taken from a single list_roles() read.

    Lives for one authorization decision; never reuse it across requests.
    """

    def __init__(self, roles: Iterable[RoleRecord], default_role_id: Optional[uuid.UUID] = None):
        self._roles: tuple[RoleRecord, ...] = tuple(sorted(roles, key=lambda r: (r.position, str(r.id))))
        self._by_id: Dict[uuid.UUID, RoleRecord] = {r.id: r for r in self._roles}
        self._default_role_id = default_role_id

    @classmethod
    async def load(cls, store: AuthzStore, tenant_id: uuid.UUID, default_role_id: Optional[uuid.UUID] = None) -> "RoleCatalog":
        roles = await store.list_roles(tenant_id)
        return cls(roles, default_role_id=default_role_id)

    @property
    def roles(self) -> Sequence[RoleRecord]:
        return self._roles

    @property
    def default_role(self) -> Optional[RoleRecord]:
        if self._default_role_id is not None:
            role = self._by_id.get(self._default_role_id)
            if role is not None:
                return role
        for role in self._roles:
            if role.is_default:
                return role
        return None

    def get(self, role_id: uuid.UUID) -> Optional[RoleRecord]:
        return self._by_id.get(role_id)

    def existing(self, role_ids: Iterable[uuid.UUID]) -> list[RoleRecord]:
        """Roles for the given ids; ids that no longer exist are skipped."""
        return [self._by_id[rid] for rid in role_ids if rid in self._by_id]

    def positions_of(self, role_ids: Iterable[uuid.UUID]) -> list[int]:
        return [r.position for r in self.existing(role_ids)]

    def highest_position(self) -> int:
        return max((r.position for r in self._roles), default=0)

    def next_position(self) -> int:
        return self.highest_position() + 1

    def is_default(self, role_id: uuid.UUID) -> bool:
        role = self._by_id.get(role_id)
        if role is None:
            return False
        return role.is_default or role_id == self._default_role_id

    def __contains__(self, role_id: object) -> bool:
        return role_id in self._by_id

    def __iter__(self) -> Iterator[RoleRecord]:
        return iter(self._roles)

    def __len__(self) -> int:
        return len(self._roles)
