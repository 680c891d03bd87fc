from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional, Sequence

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from jose import jwt

from hearth.auth.errors import NotFoundError, StoreError, ValidationError
from hearth.auth.facade import AuthorizationFacade
from hearth.auth.permissions import (
    DEFAULT_ROLE_COLOR,
    DEFAULT_ROLE_NAME,
    DEFAULT_ROLE_PERMISSIONS,
    Permission,
    PermissionSet,
)
from hearth.auth.store import BanRecord, MembershipRecord, RolePosition, RoleRecord, TenantRecord, UserRef
from hearth.core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------
# In-memory Store (test double for the Store protocol)
# ---------------------------------------------------------
class InMemoryStore:
    """
    Dict-backed Store with the same contract as SqlAlchemyStore.

    slow_membership_reads: the next N get_membership calls hang (to trip the
    façade's read deadline). fail_reads: the next N reads raise StoreError.
    """

    def __init__(self) -> None:
        self.users: Dict[uuid.UUID, str] = {}
        self.public_ids: Dict[str, uuid.UUID] = {}
        self.tenants: Dict[uuid.UUID, TenantRecord] = {}
        self.roles: Dict[uuid.UUID, Dict[uuid.UUID, RoleRecord]] = {}
        self.memberships: Dict[tuple[uuid.UUID, uuid.UUID], MembershipRecord] = {}
        self.bans: Dict[tuple[uuid.UUID, uuid.UUID], BanRecord] = {}
        self.slow_membership_reads = 0
        self.fail_reads = 0
        self.read_calls = 0

    # -- test helpers --------------------------------------
    def add_user(self, public_id: Optional[str] = None) -> uuid.UUID:
        user_id = uuid.uuid4()
        public_id = public_id or f"user_{user_id.hex[:12]}"
        self.users[user_id] = public_id
        self.public_ids[public_id] = user_id
        return user_id

    def add_role(
        self,
        tenant_id: uuid.UUID,
        name: str,
        position: int,
        *granted: Permission,
    ) -> RoleRecord:
        role = RoleRecord(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name=name,
            color="#FFFFFF",
            position=position,
            is_default=False,
            permissions=PermissionSet.of(*granted),
        )
        self.roles[tenant_id][role.id] = role
        return role

    def put_member(self, tenant_id: uuid.UUID, user_id: uuid.UUID, *role_ids: uuid.UUID) -> MembershipRecord:
        tenant = self.tenants[tenant_id]
        record = MembershipRecord(
            tenant_id=tenant_id,
            user_id=user_id,
            role_ids=frozenset({tenant.default_role_id, *role_ids}),
            joined_at=utcnow(),
        )
        self.memberships[(tenant_id, user_id)] = record
        return record

    async def _read(self) -> None:
        self.read_calls += 1
        if self.fail_reads > 0:
            self.fail_reads -= 1
            raise StoreError("connection reset by peer")

    # -- reads ----------------------------------------------
    async def normalize_user_id(self, ref: UserRef) -> Optional[uuid.UUID]:
        await self._read()
        if isinstance(ref, uuid.UUID):
            return ref if ref in self.users else None
        raw = str(ref).strip()
        try:
            candidate = uuid.UUID(raw)
        except ValueError:
            candidate = None
        if candidate is not None and candidate in self.users:
            return candidate
        return self.public_ids.get(raw)

    async def get_tenant(self, tenant_id: uuid.UUID) -> Optional[TenantRecord]:
        await self._read()
        return self.tenants.get(tenant_id)

    async def get_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> Optional[MembershipRecord]:
        await self._read()
        if self.slow_membership_reads > 0:
            self.slow_membership_reads -= 1
            await asyncio.sleep(10)
        return self.memberships.get((tenant_id, user_id))

    async def list_roles(self, tenant_id: uuid.UUID) -> Sequence[RoleRecord]:
        await self._read()
        return sorted(self.roles.get(tenant_id, {}).values(), key=lambda r: r.position)

    async def get_role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> Optional[RoleRecord]:
        await self._read()
        return self.roles.get(tenant_id, {}).get(role_id)

    # -- writes ---------------------------------------------
    async def create_tenant(self, name: str, owner_id: uuid.UUID) -> TenantRecord:
        tenant_id = uuid.uuid4()
        default_role = RoleRecord(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name=DEFAULT_ROLE_NAME,
            color=DEFAULT_ROLE_COLOR,
            position=0,
            is_default=True,
            permissions=DEFAULT_ROLE_PERMISSIONS,
        )
        tenant = TenantRecord(id=tenant_id, owner_id=owner_id, default_role_id=default_role.id, name=name)
        self.tenants[tenant_id] = tenant
        self.roles[tenant_id] = {default_role.id: default_role}
        self.put_member(tenant_id, owner_id)
        return tenant

    async def create_role(self, tenant_id, name, color, permissions) -> RoleRecord:
        position = max((r.position for r in self.roles[tenant_id].values()), default=0) + 1
        role = RoleRecord(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name=name,
            color=color,
            position=position,
            permissions=permissions,
        )
        self.roles[tenant_id][role.id] = role
        return role

    async def update_role(self, tenant_id, role_id, *, name=None, color=None, permissions=None) -> RoleRecord:
        role = self.roles.get(tenant_id, {}).get(role_id)
        if role is None:
            raise NotFoundError("role", role_id)
        if role.is_default and (name is not None or permissions is not None):
            raise ValidationError("The default role's name and permissions are immutable.")
        updated = replace(
            role,
            name=name if name is not None else role.name,
            color=color if color is not None else role.color,
            permissions=permissions if permissions is not None else role.permissions,
        )
        self.roles[tenant_id][role_id] = updated
        return updated

    async def mutate_role_positions(self, tenant_id: uuid.UUID, positions: Iterable[RolePosition]) -> None:
        roles = self.roles[tenant_id]
        moves = dict(positions)
        if any(rid not in roles for rid in moves):
            raise ValidationError("One or more role IDs are invalid")
        final = {rid: moves.get(rid, r.position) for rid, r in roles.items()}
        if len(set(final.values())) != len(final):
            raise ValidationError("Role positions must be unique within a tenant.")
        for rid, position in moves.items():
            roles[rid] = replace(roles[rid], position=position)

    async def mutate_membership_roles(self, tenant_id, user_id, role_ids) -> MembershipRecord:
        current = self.memberships.get((tenant_id, user_id))
        if current is None:
            raise NotFoundError("member", user_id)
        wanted = set(role_ids) | {self.tenants[tenant_id].default_role_id}
        if any(rid not in self.roles[tenant_id] for rid in wanted):
            raise ValidationError("Unknown role id(s) for tenant")
        updated = replace(current, role_ids=frozenset(wanted))
        self.memberships[(tenant_id, user_id)] = updated
        return updated

    async def delete_role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> None:
        role = self.roles.get(tenant_id, {}).get(role_id)
        if role is None:
            raise NotFoundError("role", role_id)
        if role.is_default:
            raise ValidationError("The default role cannot be deleted.")
        del self.roles[tenant_id][role_id]
        for key, m in list(self.memberships.items()):
            if key[0] == tenant_id and role_id in m.role_ids:
                self.memberships[key] = replace(m, role_ids=m.role_ids - {role_id})

    async def add_membership(self, tenant_id, user_id) -> MembershipRecord:
        if tenant_id not in self.tenants:
            raise NotFoundError("tenant", tenant_id)
        if (tenant_id, user_id) in self.bans:
            raise ValidationError("User is banned from this tenant.")
        existing = self.memberships.get((tenant_id, user_id))
        return existing or self.put_member(tenant_id, user_id)

    async def remove_membership(self, tenant_id, user_id) -> None:
        if self.memberships.pop((tenant_id, user_id), None) is None:
            raise NotFoundError("member", user_id)

    async def ban_member(self, tenant_id, user_id, banned_by, reason=None) -> None:
        self.memberships.pop((tenant_id, user_id), None)
        self.bans[(tenant_id, user_id)] = BanRecord(tenant_id, user_id, banned_by=banned_by, reason=reason, created_at=utcnow())

    async def unban_member(self, tenant_id, user_id) -> None:
        if (tenant_id, user_id) not in self.bans:
            raise NotFoundError("ban", user_id)
        del self.bans[(tenant_id, user_id)]

    async def list_bans(self, tenant_id) -> Sequence[BanRecord]:
        bans = [b for key, b in self.bans.items() if key[0] == tenant_id]
        return sorted(bans, key=lambda b: b.created_at, reverse=True)

    async def list_memberships(self, tenant_id) -> Sequence[MembershipRecord]:
        members = [m for key, m in self.memberships.items() if key[0] == tenant_id]
        return sorted(members, key=lambda m: m.joined_at)

    async def update_nickname(self, tenant_id, user_id, nickname) -> MembershipRecord:
        current = self.memberships.get((tenant_id, user_id))
        if current is None:
            raise NotFoundError("member", user_id)
        updated = replace(current, nickname=nickname)
        self.memberships[(tenant_id, user_id)] = updated
        return updated


# ---------------------------------------------------------
# A seeded tenant shared by the scenario tests
# ---------------------------------------------------------
@dataclass
class World:
    store: InMemoryStore
    tenant: TenantRecord
    owner: uuid.UUID
    default_role: RoleRecord
    u1: uuid.UUID          # holds A (position 5: MANAGE_ROLES, KICK_MEMBERS, BAN_MEMBERS)
    u2: uuid.UUID          # holds C (position 3)
    plain: uuid.UUID       # default role only
    outsider: uuid.UUID    # no membership
    role_a: RoleRecord
    role_b: RoleRecord     # position 10: MANAGE_ROLES
    role_c: RoleRecord


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest_asyncio.fixture()
async def world(store: InMemoryStore) -> World:
    owner = store.add_user("owner")
    tenant = await store.create_tenant("Test Tenant", owner)

    role_a = store.add_role(
        tenant.id, "Moderator", 5, Permission.MANAGE_ROLES, Permission.KICK_MEMBERS, Permission.BAN_MEMBERS
    )
    role_b = store.add_role(tenant.id, "Admin", 10, Permission.MANAGE_ROLES)
    role_c = store.add_role(tenant.id, "Regular", 3)

    u1 = store.add_user("u1")
    u2 = store.add_user("u2")
    plain = store.add_user("plain")
    outsider = store.add_user("outsider")
    store.put_member(tenant.id, u1, role_a.id)
    store.put_member(tenant.id, u2, role_c.id)
    store.put_member(tenant.id, plain)

    return World(
        store=store,
        tenant=tenant,
        owner=owner,
        default_role=store.roles[tenant.id][tenant.default_role_id],
        u1=u1,
        u2=u2,
        plain=plain,
        outsider=outsider,
        role_a=role_a,
        role_b=role_b,
        role_c=role_c,
    )


@pytest.fixture()
def facade(store: InMemoryStore) -> AuthorizationFacade:
    return AuthorizationFacade(store, store_timeout=0.05)


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(store: InMemoryStore):
    from hearth.api.deps.authz import get_retry_policy, get_store
    from hearth.core.retry import RetryPolicy
    from hearth.main import app as fastapi_app

    async def _override_get_store():
        return store

    fastapi_app.dependency_overrides[get_store] = _override_get_store
    fastapi_app.dependency_overrides[get_retry_policy] = lambda: RetryPolicy(max_attempts=2, backoff_base=0.0)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac


def auth_headers(subject: object) -> dict[str, str]:
    token = jwt.encode(
        {"sub": str(subject), "exp": int((utcnow() + timedelta(minutes=5)).timestamp())},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def as_user():
    return auth_headers


# ---------------------------------------------------------
# PostgreSQL (store integration tests only)
# ---------------------------------------------------------
@pytest.fixture()
def database_url_async() -> str:
    url = os.getenv("DATABASE_URL_ASYNC")
    if not url:
        pytest.skip("DATABASE_URL_ASYNC is not set; skipping PostgreSQL store tests")
    return url


@pytest_asyncio.fixture()
async def db(database_url_async: str):
    """
    One isolated schema per test, created from Base.metadata and dropped afterwards.
    """
    from sqlalchemy import text
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool

    from hearth.db.base import Base
    import hearth.models  # noqa: F401

    schema = f"test_{uuid.uuid4().hex}"
    engine = create_async_engine(
        database_url_async,
        future=True,
        echo=False,
        poolclass=NullPool,
        connect_args={"server_settings": {"search_path": schema}},
    )
    async with engine.begin() as conn:
        await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
        await conn.execute(text(f'SET search_path TO "{schema}"'))
        await conn.run_sync(Base.metadata.create_all)

    sessionmaker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with sessionmaker() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.execute(text(f'DROP SCHEMA IF EXISTS "{schema}" CASCADE'))
    await engine.dispose()
