from __future__ import annotations

import logging
import uuid
from typing import Optional

from hearth.auth.store import AuthzStore, MembershipRecord, TenantRecord, UserRef

logger = logging.getLogger(__name__)


class MembershipResolver:
    """
    Single place that answers "is this principal a member of this tenant".

    A principal is a member when they own the tenant, when a membership record
    exists, or when the tenant's legacy member-id list contains them.
    """

    def __init__(self, store: AuthzStore):
        self._store = store

    async def normalize(self, user_ref: UserRef) -> Optional[uuid.UUID]:
        if isinstance(user_ref, str) and not user_ref.strip():
            return None
        return await self._store.normalize_user_id(user_ref)

    async def resolve(self, tenant: TenantRecord, user_ref: UserRef) -> Optional[MembershipRecord]:
        user_id = await self.normalize(user_ref)
        if user_id is None:
            return None
        return await self.resolve_id(tenant, user_id)

    async def resolve_id(self, tenant: TenantRecord, user_id: uuid.UUID) -> Optional[MembershipRecord]:
        record = await self._store.get_membership(tenant.id, user_id)
        if record is not None:
            return record

        if user_id == tenant.owner_id:
            # Owner always belongs, even if the membership row went missing.
            return _implicit_membership(tenant, user_id)

        if user_id in tenant.legacy_member_ids:
            logger.info("membership via legacy member list tenant=%s user=%s", tenant.id, user_id)
            return _implicit_membership(tenant, user_id)

        return None


def _implicit_membership(tenant: TenantRecord, user_id: uuid.UUID) -> MembershipRecord:
    return MembershipRecord(
        tenant_id=tenant.id,
        user_id=user_id,
        role_ids=frozenset({tenant.default_role_id}),
        joined_at=None,
    )
