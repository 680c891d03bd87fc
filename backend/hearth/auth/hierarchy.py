from __future__ import annotations

import math
import uuid
from typing import Union

from hearth.auth.role_catalog import RoleCatalog
from hearth.auth.store import MembershipRecord, TenantRecord

# int for role positions, math.inf for the tenant owner
Authority = Union[int, float]

OWNER_AUTHORITY: Authority = math.inf
NO_AUTHORITY: Authority = 0


class HierarchyGuard:
    """Role-position math for one tenant snapshot."""

    def __init__(self, catalog: RoleCatalog, tenant: TenantRecord):
        self._catalog = catalog
        self._tenant = tenant

    def is_owner(self, user_id: uuid.UUID) -> bool:
        return user_id == self._tenant.owner_id

    def authority(self, membership: MembershipRecord) -> Authority:
        if self.is_owner(membership.user_id):
            return OWNER_AUTHORITY
        return max(self._catalog.positions_of(membership.role_ids), default=NO_AUTHORITY)

    def role_authority(self, role_id: uuid.UUID) -> Authority:
        role = self._catalog.get(role_id)
        # unknown roles rank as untouchable
        return role.position if role is not None else OWNER_AUTHORITY

    @staticmethod
    def can_act_on(actor: Authority, target: Authority) -> bool:
        # strict: peers of equal rank never manage each other
        return actor > target


def can_act_on(actor: Authority, target: Authority) -> bool:
    return HierarchyGuard.can_act_on(actor, target)
