# hearth/crud/store.py
from __future__ import annotations

import functools
import logging
import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hearth.auth.errors import ConflictError, NotFoundError, StoreError, ValidationError
from hearth.auth.permissions import DEFAULT_ROLE_COLOR, DEFAULT_ROLE_NAME, DEFAULT_ROLE_PERMISSIONS, PermissionSet
from hearth.auth.store import BanRecord, MembershipRecord, RolePosition, RoleRecord, TenantRecord, UserRef
from hearth.models.role import Role
from hearth.models.tenant import Tenant
from hearth.models.tenant_membership import MembershipRole, TenantBan, TenantMembership
from hearth.models.user import User

logger = logging.getLogger(__name__)


def _store_op(fn):
    """Turn driver/ORM failures into StoreError (ConflictError for constraint races) and roll back."""

    @functools.wraps(fn)
    async def wrapper(self: "SqlAlchemyStore", *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except IntegrityError as e:
            logger.warning("store operation %s hit a constraint: %s", fn.__name__, e.orig)
            await self.db.rollback()
            raise ConflictError("The change conflicts with a concurrent update; retry the request.") from e
        except SQLAlchemyError as e:
            logger.exception("store operation %s failed", fn.__name__)
            await self.db.rollback()
            raise StoreError(str(e)) from e

    return wrapper


# ---------------------------------------------------------
# Record mapping
# ---------------------------------------------------------
def _role_record(role: Role) -> RoleRecord:
    return RoleRecord(
        id=role.id,
        tenant_id=role.tenant_id,
        name=role.name,
        color=role.color,
        position=role.position,
        is_default=role.is_default,
        permissions=PermissionSet.from_mapping(role.permissions),
    )


def _tenant_record(tenant: Tenant) -> TenantRecord:
    if tenant.default_role_id is None:
        # only possible mid-creation or with corrupted data; never guess
        raise StoreError(f"tenant {tenant.id} has no default role")
    return TenantRecord(
        id=tenant.id,
        owner_id=tenant.owner_id,
        default_role_id=tenant.default_role_id,
        name=tenant.name,
        legacy_member_ids=frozenset(tenant.legacy_member_ids or ()),
    )


def _membership_record(membership: TenantMembership, role_ids: Iterable[uuid.UUID]) -> MembershipRecord:
    return MembershipRecord(
        tenant_id=membership.tenant_id,
        user_id=membership.user_id,
        role_ids=frozenset(role_ids),
        joined_at=membership.joined_at,
        nickname=membership.nickname,
    )



def _ban_record(ban: TenantBan) -> BanRecord:
    return BanRecord(
        tenant_id=ban.tenant_id,
        user_id=ban.user_id,
        banned_by=ban.banned_by,
        reason=ban.reason,
        created_at=ban.created_at,
    )

# ---------------------------------------------------------
# Queries
# ---------------------------------------------------------
async def find_membership(db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID) -> Optional[TenantMembership]:
    stmt = select(TenantMembership).where(
        TenantMembership.tenant_id == tenant_id,
        TenantMembership.user_id == user_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def membership_role_ids(db: AsyncSession, membership_id: uuid.UUID) -> list[uuid.UUID]:
    stmt = select(MembershipRole.role_id).where(MembershipRole.membership_id == membership_id)
    return list((await db.execute(stmt)).scalars().all())


async def highest_role_position(db: AsyncSession, tenant_id: uuid.UUID) -> int:
    stmt = select(func.max(Role.position)).where(Role.tenant_id == tenant_id)
    res = await db.execute(stmt)
    return int(res.scalar() or 0)


async def is_banned(db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    stmt = select(func.count(TenantBan.id)).where(
        TenantBan.tenant_id == tenant_id,
        TenantBan.user_id == user_id,
    )
    return int((await db.execute(stmt)).scalar() or 0) > 0


class SqlAlchemyStore:
    """Store backed by PostgreSQL through one request-scoped AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # -----------------------------
    # Reads
    # -----------------------------
    @_store_op
    async def normalize_user_id(self, ref: UserRef) -> Optional[uuid.UUID]:
        """
        Principals are referenced either by users.id (store-internal UUID) or by
        users.public_id (stable application id). Both resolve to users.id.
        """
        if isinstance(ref, uuid.UUID):
            candidate: Optional[uuid.UUID] = ref
        else:
            raw = User.normalize_public_id(str(ref))
            if raw is None:
                return None
            try:
                candidate = uuid.UUID(raw)
            except ValueError:
                candidate = None

        if candidate is not None:
            user = await self.db.get(User, candidate)
            if user is not None:
                return user.id

        stmt = select(User.id).where(User.public_id == str(ref).strip())
        return (await self.db.execute(stmt)).scalar_one_or_none()

    @_store_op
    async def get_tenant(self, tenant_id: uuid.UUID) -> Optional[TenantRecord]:
        tenant = await self.db.get(Tenant, tenant_id)
        return _tenant_record(tenant) if tenant is not None else None

    @_store_op
    async def get_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> Optional[MembershipRecord]:
        membership = await find_membership(self.db, tenant_id, user_id)
        if membership is None:
            return None
        return _membership_record(membership, await membership_role_ids(self.db, membership.id))

    @_store_op
    async def list_roles(self, tenant_id: uuid.UUID) -> Sequence[RoleRecord]:
        stmt = select(Role).where(Role.tenant_id == tenant_id).order_by(Role.position.asc())
        return [_role_record(r) for r in (await self.db.execute(stmt)).scalars().all()]

    @_store_op
    async def get_role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> Optional[RoleRecord]:
        role = await self._role(tenant_id, role_id)
        return _role_record(role) if role is not None else None

    async def _role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> Optional[Role]:
        stmt = select(Role).where(Role.tenant_id == tenant_id, Role.id == role_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    # -----------------------------
    # Writes
    # -----------------------------
    @_store_op
    async def create_tenant(self, name: str, owner_id: uuid.UUID) -> TenantRecord:
        tenant = Tenant(name=name, owner_id=owner_id, legacy_member_ids=[])
        self.db.add(tenant)
        await self.db.flush()

        default_role = Role(
            tenant_id=tenant.id,
            name=DEFAULT_ROLE_NAME,
            color=DEFAULT_ROLE_COLOR,
            position=0,
            is_default=True,
            permissions=DEFAULT_ROLE_PERMISSIONS.to_mapping(),
        )
        self.db.add(default_role)
        await self.db.flush()
        tenant.default_role_id = default_role.id

        owner_membership = TenantMembership(tenant_id=tenant.id, user_id=owner_id)
        self.db.add(owner_membership)
        await self.db.flush()
        self.db.add(MembershipRole(membership_id=owner_membership.id, role_id=default_role.id))

        # tenant, default role and owner membership land together or not at all
        await self.db.commit()
        logger.info("tenant created id=%s owner=%s default_role=%s", tenant.id, owner_id, default_role.id)
        return _tenant_record(tenant)

    @_store_op
    async def create_role(
        self,
        tenant_id: uuid.UUID,
        name: str,
        color: str,
        permissions: PermissionSet,
    ) -> RoleRecord:
        role = Role(
            tenant_id=tenant_id,
            name=name,
            color=color,
            position=await highest_role_position(self.db, tenant_id) + 1,
            is_default=False,
            permissions=permissions.to_mapping(),
        )
        self.db.add(role)
        await self.db.commit()
        await self.db.refresh(role)
        return _role_record(role)

    @_store_op
    async def update_role(
        self,
        tenant_id: uuid.UUID,
        role_id: uuid.UUID,
        *,
        name: Optional[str] = None,
        color: Optional[str] = None,
        permissions: Optional[PermissionSet] = None,
    ) -> RoleRecord:
        role = await self._role(tenant_id, role_id)
        if role is None:
            raise NotFoundError("role", role_id)
        if role.is_default and (name is not None or permissions is not None):
            raise ValidationError("The default role's name and permissions are immutable.")

        if name is not None:
            role.name = name
        if color is not None:
            role.color = color
        if permissions is not None:
            role.permissions = permissions.to_mapping()

        await self.db.commit()
        await self.db.refresh(role)
        return _role_record(role)

    @_store_op
    async def mutate_role_positions(self, tenant_id: uuid.UUID, positions: Iterable[RolePosition]) -> None:
        roles = {r.id: r for r in (await self.db.execute(select(Role).where(Role.tenant_id == tenant_id))).scalars()}
        moves = dict(positions)

        unknown = [rid for rid in moves if rid not in roles]
        if unknown:
            raise ValidationError(f"One or more role IDs are invalid: {sorted(str(r) for r in unknown)}")

        final = {rid: moves.get(rid, role.position) for rid, role in roles.items()}
        for rid, role in roles.items():
            if role.is_default and final[rid] != role.position:
                raise ValidationError("The default role cannot be moved.")
        if len(set(final.values())) != len(final):
            raise ValidationError("Role positions must be unique within a tenant.")

        for rid, position in moves.items():
            roles[rid].position = position
        await self.db.commit()

    @_store_op
    async def mutate_membership_roles(
        self, tenant_id: uuid.UUID, user_id: uuid.UUID, role_ids: Iterable[uuid.UUID]
    ) -> MembershipRecord:
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("tenant", tenant_id)
        membership = await find_membership(self.db, tenant_id, user_id)
        if membership is None:
            raise NotFoundError("member", user_id)

        wanted = set(role_ids)
        if tenant.default_role_id is not None:
            wanted.add(tenant.default_role_id)

        stmt = select(Role.id).where(Role.tenant_id == tenant_id, Role.id.in_(wanted))
        valid = set((await self.db.execute(stmt)).scalars().all())
        if valid != wanted:
            raise ValidationError(f"Unknown role id(s) for tenant: {sorted(str(r) for r in wanted - valid)}")

        await self.db.execute(delete(MembershipRole).where(MembershipRole.membership_id == membership.id))
        for rid in wanted:
            self.db.add(MembershipRole(membership_id=membership.id, role_id=rid))
        await self.db.commit()
        return _membership_record(membership, wanted)

    @_store_op
    async def delete_role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> None:
        role = await self._role(tenant_id, role_id)
        if role is None:
            raise NotFoundError("role", role_id)
        if role.is_default:
            raise ValidationError("The default role cannot be deleted.")

        # cascade: pull the role out of every membership, then drop it
        await self.db.execute(delete(MembershipRole).where(MembershipRole.role_id == role_id))
        await self.db.delete(role)
        await self.db.commit()
        logger.info("role deleted tenant=%s role=%s", tenant_id, role_id)

    @_store_op
    async def add_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> MembershipRecord:
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("tenant", tenant_id)
        if await is_banned(self.db, tenant_id, user_id):
            raise ValidationError("User is banned from this tenant.")

        existing = await find_membership(self.db, tenant_id, user_id)
        if existing is not None:
            return _membership_record(existing, await membership_role_ids(self.db, existing.id))

        membership = TenantMembership(tenant_id=tenant_id, user_id=user_id)
        self.db.add(membership)
        await self.db.flush()
        self.db.add(MembershipRole(membership_id=membership.id, role_id=tenant.default_role_id))
        await self.db.commit()
        await self.db.refresh(membership)
        return _membership_record(membership, [tenant.default_role_id])

    @_store_op
    async def remove_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> None:
        membership = await find_membership(self.db, tenant_id, user_id)
        if membership is None:
            raise NotFoundError("member", user_id)
        await self.db.delete(membership)
        await self.db.commit()

    @_store_op
    async def ban_member(
        self, tenant_id: uuid.UUID, user_id: uuid.UUID, banned_by: uuid.UUID, reason: Optional[str] = None
    ) -> None:
        membership = await find_membership(self.db, tenant_id, user_id)
        if membership is not None:
            await self.db.delete(membership)
        if not await is_banned(self.db, tenant_id, user_id):
            self.db.add(TenantBan(tenant_id=tenant_id, user_id=user_id, banned_by=banned_by, reason=reason))
        await self.db.commit()

    @_store_op
    async def unban_member(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> None:
        res = await self.db.execute(
            delete(TenantBan).where(TenantBan.tenant_id == tenant_id, TenantBan.user_id == user_id)
        )
        if not res.rowcount:
            raise NotFoundError("ban", user_id)
        await self.db.commit()

    @_store_op
    async def list_bans(self, tenant_id: uuid.UUID) -> Sequence[BanRecord]:
        stmt = select(TenantBan).where(TenantBan.tenant_id == tenant_id).order_by(TenantBan.created_at.desc())
        return [_ban_record(b) for b in (await self.db.execute(stmt)).scalars().all()]

    @_store_op
    async def list_memberships(self, tenant_id: uuid.UUID) -> Sequence[MembershipRecord]:
        memberships = (
            await self.db.execute(
                select(TenantMembership)
                .where(TenantMembership.tenant_id == tenant_id)
                .order_by(TenantMembership.joined_at.asc())
            )
        ).scalars().all()
        if not memberships:
            return []

        # one query for every member's role ids
        rows = await self.db.execute(
            select(MembershipRole.membership_id, MembershipRole.role_id).where(
                MembershipRole.membership_id.in_([m.id for m in memberships])
            )
        )
        role_ids: dict[uuid.UUID, list[uuid.UUID]] = {}
        for membership_id, role_id in rows.all():
            role_ids.setdefault(membership_id, []).append(role_id)

        return [_membership_record(m, role_ids.get(m.id, [])) for m in memberships]

    @_store_op
    async def update_nickname(
        self, tenant_id: uuid.UUID, user_id: uuid.UUID, nickname: Optional[str]
    ) -> MembershipRecord:
        membership = await find_membership(self.db, tenant_id, user_id)
        if membership is None:
            raise NotFoundError("member", user_id)

        membership.nickname = nickname
        await self.db.commit()
        await self.db.refresh(membership)
        return _membership_record(membership, await membership_role_ids(self.db, membership.id))
