# hearth/api/v1/tenants.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from hearth.api.deps.auth import get_current_user_id
from hearth.api.deps.authz import Authorizer, get_store
from hearth.auth.actions import Action
from hearth.auth.store import Store
from hearth.schemas.tenant import TenantCreate, TenantOut

router = APIRouter(prefix="/tenants", tags=["tenants"])


# ---------------------------------------------------------
# Tenant creation
# ---------------------------------------------------------
@router.post("", response_model=TenantOut, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    payload: TenantCreate,
    store: Store = Depends(get_store),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    # Tenant, @everyone role (position 0) and the owner's membership are created together.
    tenant = await store.create_tenant(payload.name, owner_id=user_id)
    return TenantOut(
        id=tenant.id,
        name=tenant.name,
        owner_id=tenant.owner_id,
        default_role_id=tenant.default_role_id,
    )


@router.get("/{tenant_id}", response_model=TenantOut)
async def get_tenant(
    tenant_id: uuid.UUID,
    store: Store = Depends(get_store),
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    await authz.require(user_id, tenant_id, Action.VIEW_TENANT)

    tenant = await store.get_tenant(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return TenantOut(
        id=tenant.id,
        name=tenant.name,
        owner_id=tenant.owner_id,
        default_role_id=tenant.default_role_id,
    )
