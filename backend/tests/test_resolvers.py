# tests/test_resolvers.py
from __future__ import annotations

import itertools
import math
import uuid
from dataclasses import replace

import pytest

from hearth.auth.actions import Action, MemberTarget
from hearth.auth.decision import Decision
from hearth.auth.hierarchy import HierarchyGuard, OWNER_AUTHORITY, can_act_on
from hearth.auth.membership import MembershipResolver
from hearth.auth.permission_resolver import PermissionResolver
from hearth.auth.permissions import DEFAULT_ROLE_PERMISSIONS, Permission, PermissionSet
from hearth.auth.role_catalog import RoleCatalog
from hearth.auth.store import MembershipRecord, RoleRecord, TenantRecord


def _role(tenant_id, position, *granted, is_default=False) -> RoleRecord:
    return RoleRecord(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        name=f"role-{position}",
        color="#FFFFFF",
        position=position,
        is_default=is_default,
        permissions=PermissionSet.of(*granted),
    )


# -----------------------------
# Role catalog
# -----------------------------
def test_catalog_orders_by_position_and_skips_missing_ids():
    tid = uuid.uuid4()
    default = _role(tid, 0, Permission.SEND_MESSAGES, is_default=True)
    high = _role(tid, 7)
    mid = _role(tid, 2)
    catalog = RoleCatalog([high, default, mid], default_role_id=default.id)

    assert [r.position for r in catalog] == [0, 2, 7]
    assert catalog.default_role == default
    assert catalog.existing([mid.id, uuid.uuid4()]) == [mid]
    assert catalog.highest_position() == 7
    assert catalog.next_position() == 8
    assert catalog.is_default(default.id)
    assert not catalog.is_default(mid.id)


def test_empty_catalog():
    catalog = RoleCatalog([])

    assert catalog.default_role is None
    assert catalog.highest_position() == 0
    assert len(catalog) == 0


# -----------------------------
# Permission resolver
# -----------------------------
def test_effective_permissions_are_the_union_of_roles():
    tid = uuid.uuid4()
    default = _role(tid, 0, Permission.SEND_MESSAGES, is_default=True)
    mod = _role(tid, 3, Permission.KICK_MEMBERS)
    catalog = RoleCatalog([default, mod], default.id)

    perms = PermissionResolver(catalog).compute(
        MembershipRecord(tenant_id=tid, user_id=uuid.uuid4(), role_ids=frozenset({default.id, mod.id}))
    )

    assert perms.granted() == frozenset({Permission.SEND_MESSAGES, Permission.KICK_MEMBERS})


def test_administrator_role_yields_every_flag():
    tid = uuid.uuid4()
    admin = _role(tid, 1, Permission.ADMINISTRATOR)
    catalog = RoleCatalog([admin])

    perms = PermissionResolver(catalog).compute(
        MembershipRecord(tenant_id=tid, user_id=uuid.uuid4(), role_ids=frozenset({admin.id}))
    )

    assert perms == PermissionSet.all()


def test_no_roles_falls_back_to_default_role():
    tid = uuid.uuid4()
    default = replace(_role(tid, 0, is_default=True), permissions=DEFAULT_ROLE_PERMISSIONS)
    member = MembershipRecord(tenant_id=tid, user_id=uuid.uuid4())

    assert PermissionResolver(RoleCatalog([default], default.id)).compute(member) == DEFAULT_ROLE_PERMISSIONS
    assert PermissionResolver(RoleCatalog([])).compute(member) == PermissionSet.none()


def test_deleted_role_ids_are_ignored():
    tid = uuid.uuid4()
    default = _role(tid, 0, Permission.SEND_MESSAGES, is_default=True)
    catalog = RoleCatalog([default], default.id)

    perms = PermissionResolver(catalog).compute(
        MembershipRecord(tenant_id=tid, user_id=uuid.uuid4(), role_ids=frozenset({default.id, uuid.uuid4()}))
    )

    assert perms.granted() == frozenset({Permission.SEND_MESSAGES})


def test_only_stale_role_ids_fall_back_to_default_role():
    tid = uuid.uuid4()
    default = replace(_role(tid, 0, is_default=True), permissions=DEFAULT_ROLE_PERMISSIONS)
    catalog = RoleCatalog([default, _role(tid, 4, Permission.BAN_MEMBERS)], default.id)

    perms = PermissionResolver(catalog).compute(
        MembershipRecord(tenant_id=tid, user_id=uuid.uuid4(), role_ids=frozenset({uuid.uuid4(), uuid.uuid4()}))
    )

    assert perms == DEFAULT_ROLE_PERMISSIONS


def test_compute_ignores_role_order():
    tid = uuid.uuid4()
    default = _role(tid, 0, Permission.SEND_MESSAGES, is_default=True)
    roles = [
        default,
        _role(tid, 2, Permission.KICK_MEMBERS, Permission.MUTE_MEMBERS),
        _role(tid, 5, Permission.BAN_MEMBERS),
        _role(tid, 9, Permission.MANAGE_ROLES, Permission.KICK_MEMBERS),
    ]
    ids = [r.id for r in roles]
    expected = PermissionSet.of(
        Permission.SEND_MESSAGES,
        Permission.KICK_MEMBERS,
        Permission.MUTE_MEMBERS,
        Permission.BAN_MEMBERS,
        Permission.MANAGE_ROLES,
    )

    for ordering in itertools.permutations(range(len(roles))):
        catalog = RoleCatalog([roles[i] for i in ordering], default.id)
        member = MembershipRecord(tenant_id=tid, user_id=uuid.uuid4(), role_ids=frozenset(ids[i] for i in ordering))
        resolver = PermissionResolver(catalog)

        assert resolver.compute(member) == expected
        assert resolver.compute(member) == resolver.compute(member)


@pytest.mark.asyncio
async def test_repeated_decisions_are_identical(world, facade):
    first = await facade.can(world.u1, world.tenant.id, Action.KICK_MEMBER, MemberTarget(world.u2))
    again = await facade.can(world.u1, world.tenant.id, Action.KICK_MEMBER, MemberTarget(world.u2))
    denied = [await facade.can(world.plain, world.tenant.id, Action.BAN_MEMBER, MemberTarget(world.u2)) for _ in range(3)]

    assert first == again == Decision.allowed()
    assert len(set(denied)) == 1
    assert denied[0].permission is Permission.BAN_MEMBERS


# -----------------------------
# Hierarchy guard
# -----------------------------
def test_authority_is_highest_position_and_owner_is_unbounded():
    tid = uuid.uuid4()
    owner_id = uuid.uuid4()
    default = _role(tid, 0, is_default=True)
    low = _role(tid, 2)
    high = _role(tid, 9)
    tenant = TenantRecord(id=tid, owner_id=owner_id, default_role_id=default.id)
    guard = HierarchyGuard(RoleCatalog([default, low, high], default.id), tenant)

    member = MembershipRecord(tenant_id=tid, user_id=uuid.uuid4(), role_ids=frozenset({default.id, low.id, high.id}))
    nobody = MembershipRecord(tenant_id=tid, user_id=uuid.uuid4())
    owner = MembershipRecord(tenant_id=tid, user_id=owner_id)

    assert guard.authority(member) == 9
    assert guard.authority(nobody) == 0
    assert guard.authority(owner) == OWNER_AUTHORITY == math.inf
    assert guard.role_authority(uuid.uuid4()) == OWNER_AUTHORITY


@pytest.mark.parametrize(
    "actor,target,expected",
    [
        (5, 3, True),
        (5, 5, False),
        (3, 5, False),
        (math.inf, 10_000, True),
        (0, 0, False),
    ],
)
def test_can_act_on_denies_on_equal(actor, target, expected):
    assert can_act_on(actor, target) is expected


# -----------------------------
# Membership resolver
# -----------------------------
@pytest.mark.asyncio
async def test_membership_record_wins(world):
    resolver = MembershipResolver(world.store)

    member = await resolver.resolve(world.tenant, world.u1)

    assert member is not None
    assert world.role_a.id in member.role_ids


@pytest.mark.asyncio
async def test_owner_is_member_without_a_record(world):
    del world.store.memberships[(world.tenant.id, world.owner)]
    resolver = MembershipResolver(world.store)

    member = await resolver.resolve(world.tenant, world.owner)

    assert member is not None
    assert member.role_ids == frozenset({world.tenant.default_role_id})


@pytest.mark.asyncio
async def test_legacy_member_list_counts(world):
    legacy = world.store.add_user("legacy")
    tenant = replace(world.tenant, legacy_member_ids=frozenset({legacy}))
    resolver = MembershipResolver(world.store)

    member = await resolver.resolve(tenant, "legacy")

    assert member is not None
    assert member.user_id == legacy
    assert member.role_ids == frozenset({tenant.default_role_id})


@pytest.mark.asyncio
async def test_non_member_and_unknown_refs_resolve_to_none(world):
    resolver = MembershipResolver(world.store)

    assert await resolver.resolve(world.tenant, world.outsider) is None
    assert await resolver.resolve(world.tenant, "no-such-user") is None
    assert await resolver.resolve(world.tenant, "   ") is None


@pytest.mark.asyncio
async def test_string_and_uuid_refs_normalize_identically(world):
    resolver = MembershipResolver(world.store)

    assert await resolver.normalize(str(world.u2)) == world.u2
    assert await resolver.normalize("u2") == world.u2
    assert await resolver.normalize(world.u2) == world.u2
