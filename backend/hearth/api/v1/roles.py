# hearth/api/v1/roles.py
from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from hearth.api.deps.auth import get_current_user_id
from hearth.api.deps.authz import Authorizer, get_store
from hearth.auth.actions import Action, NewRoleTarget, RoleReorderTarget, RoleTarget, role_edit_actions
from hearth.auth.permissions import NEW_ROLE_PERMISSIONS, PermissionSet
from hearth.auth.store import RoleRecord, Store
from hearth.schemas.role import RoleCreate, RoleOut, RoleReorder, RoleUpdate

router = APIRouter(prefix="/tenants/{tenant_id}/roles", tags=["roles"])


def _role_out(role: RoleRecord) -> RoleOut:
    return RoleOut(
        id=role.id,
        tenant_id=role.tenant_id,
        name=role.name,
        color=role.color,
        position=role.position,
        is_default=role.is_default,
        permissions=role.permissions.to_mapping(),
    )


@router.get("", response_model=List[RoleOut])
async def list_roles(
    tenant_id: uuid.UUID,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.VIEW_TENANT)
    return [_role_out(r) for r in await store.list_roles(tenant_id)]


@router.post("", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(
    tenant_id: uuid.UUID,
    payload: RoleCreate,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    permissions = (
        PermissionSet.from_mapping(payload.permissions)
        if payload.permissions is not None
        else NEW_ROLE_PERMISSIONS
    )
    await authz.require(user_id, tenant_id, Action.CREATE_ROLE, NewRoleTarget(permissions=permissions))

    role = await store.create_role(tenant_id, payload.name.strip(), payload.color, permissions)
    return _role_out(role)


# Declared before /{role_id} so "reorder" is not parsed as a role id.
@router.patch("/reorder", response_model=List[RoleOut])
async def reorder_roles(
    tenant_id: uuid.UUID,
    payload: RoleReorder,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    moves = tuple((r.id, r.position) for r in payload.roles)
    await authz.require(user_id, tenant_id, Action.REORDER_ROLES, RoleReorderTarget(moves=moves))

    await store.mutate_role_positions(tenant_id, moves)
    roles = await store.list_roles(tenant_id)
    return [_role_out(r) for r in sorted(roles, key=lambda r: r.position, reverse=True)]


@router.patch("/{role_id}", response_model=RoleOut)
async def update_role(
    tenant_id: uuid.UUID,
    role_id: uuid.UUID,
    payload: RoleUpdate,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    actions = role_edit_actions(name=payload.name, color=payload.color, permissions=payload.permissions)
    if not actions:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields provided to update.")

    # flags being switched on are the ones that could escalate
    granted = PermissionSet.from_mapping(payload.permissions) if payload.permissions else None
    await authz.require(user_id, tenant_id, actions, RoleTarget(role_id=role_id, permissions=granted))

    current = await store.get_role(tenant_id, role_id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")

    role = await store.update_role(
        tenant_id,
        role_id,
        name=payload.name.strip() if payload.name else None,
        color=payload.color,
        permissions=current.permissions.merged(payload.permissions) if payload.permissions else None,
    )
    return _role_out(role)


@router.delete("/{role_id}")
async def delete_role(
    tenant_id: uuid.UUID,
    role_id: uuid.UUID,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.DELETE_ROLE, RoleTarget(role_id=role_id))

    await store.delete_role(tenant_id, role_id)
    return {"status": "ok", "role_id": str(role_id)}
