# hearth/api/v1/members.py
from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from hearth.api.deps.auth import get_current_user_id
from hearth.api.deps.authz import Authorizer, get_store
from hearth.auth.actions import Action, MemberTarget, RoleAssignmentTarget
from hearth.auth.store import MembershipRecord, Store
from hearth.schemas.tenant_membership import (
    BanCreate,
    BanOut,
    MemberRoleChange,
    NicknameUpdate,
    TenantMemberOut,
)

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["members"])


def _member_out(m: MembershipRecord) -> TenantMemberOut:
    return TenantMemberOut(
        tenant_id=m.tenant_id,
        user_id=m.user_id,
        role_ids=sorted(m.role_ids, key=str),
        nickname=m.nickname,
        joined_at=m.joined_at,
    )


async def _canonical_member_id(store: Store, member_id: str) -> uuid.UUID:
    user_id = await store.normalize_user_id(member_id)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    return user_id


# ---------------------------------------------------------
# Join
# ---------------------------------------------------------
@router.post("/members", response_model=TenantMemberOut, status_code=status.HTTP_201_CREATED)
async def join_tenant(
    tenant_id: uuid.UUID,
    store: Store = Depends(get_store),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Join with the default role only; banned users get 422."""
    membership = await store.add_membership(tenant_id, user_id)
    return _member_out(membership)


# ---------------------------------------------------------
# Listing
# ---------------------------------------------------------
@router.get("/members", response_model=List[TenantMemberOut])
async def list_members(
    tenant_id: uuid.UUID,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.VIEW_TENANT)
    memberships = await store.list_memberships(tenant_id)
    return [_member_out(m) for m in memberships]


# ---------------------------------------------------------
# Role assignment
# ---------------------------------------------------------
@router.patch("/members/{member_id}/roles", response_model=TenantMemberOut)
async def change_member_role(
    tenant_id: uuid.UUID,
    member_id: str,
    payload: MemberRoleChange,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    action = Action.ASSIGN_ROLE if payload.action == "add" else Action.REMOVE_ROLE
    await authz.require(user_id, tenant_id, action, RoleAssignmentTarget(user_id=member_id, role_id=payload.role_id))

    target_id = await _canonical_member_id(store, member_id)
    current = await store.get_membership(tenant_id, target_id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")

    if action is Action.ASSIGN_ROLE:
        role_ids = set(current.role_ids) | {payload.role_id}
    else:
        role_ids = set(current.role_ids) - {payload.role_id}

    membership = await store.mutate_membership_roles(tenant_id, target_id, role_ids)
    return _member_out(membership)


# ---------------------------------------------------------
# Moderation
# ---------------------------------------------------------
@router.delete("/members/{member_id}")
async def kick_member(
    tenant_id: uuid.UUID,
    member_id: str,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.KICK_MEMBER, MemberTarget(user_id=member_id))

    target_id = await _canonical_member_id(store, member_id)
    await store.remove_membership(tenant_id, target_id)
    return {"status": "ok", "message": "Member has been kicked from the tenant"}


@router.post("/members/{member_id}/ban")
async def ban_member(
    tenant_id: uuid.UUID,
    member_id: str,
    payload: BanCreate,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.BAN_MEMBER, MemberTarget(user_id=member_id))

    target_id = await _canonical_member_id(store, member_id)
    await store.ban_member(tenant_id, target_id, banned_by=user_id, reason=payload.reason)
    return {"status": "ok", "message": "Member has been banned from the tenant"}


@router.delete("/bans/{member_id}")
async def unban_member(
    tenant_id: uuid.UUID,
    member_id: str,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.UNBAN_MEMBER)

    target_id = await _canonical_member_id(store, member_id)
    await store.unban_member(tenant_id, target_id)
    return {"status": "ok"}


@router.get("/bans", response_model=List[BanOut])
async def list_bans(
    tenant_id: uuid.UUID,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.VIEW_BANS)
    bans = await store.list_bans(tenant_id)
    return [
        BanOut(
            tenant_id=b.tenant_id,
            user_id=b.user_id,
            banned_by=b.banned_by,
            reason=b.reason,
            created_at=b.created_at,
        )
        for b in bans
    ]


# ---------------------------------------------------------
# Nicknames
# ---------------------------------------------------------
@router.patch("/members/{member_id}", response_model=TenantMemberOut)
async def update_member_nickname(
    tenant_id: uuid.UUID,
    member_id: str,
    payload: NicknameUpdate,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Members change their own nickname; changing anyone else's needs MANAGE_NICKNAMES and hierarchy."""
    target_id = await store.normalize_user_id(member_id)
    if target_id == user_id:
        await authz.require(user_id, tenant_id, Action.CHANGE_OWN_NICKNAME)
    else:
        await authz.require(user_id, tenant_id, Action.MANAGE_NICKNAME, MemberTarget(user_id=member_id))
        target_id = await _canonical_member_id(store, member_id)

    membership = await store.update_nickname(tenant_id, target_id, payload.nickname)
    return _member_out(membership)
