# hearth/api/v1/access.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from hearth.api.deps.auth import get_current_user_id
from hearth.api.deps.authz import Authorizer, raise_for_decision
from hearth.auth.actions import (
    MemberTarget,
    NewRoleTarget,
    RoleAssignmentTarget,
    RoleReorderTarget,
    RoleTarget,
    Target,
    rule_for,
)
from hearth.auth.decision import DenyReason
from hearth.auth.permissions import PermissionSet
from hearth.schemas.authz import AccessCheckRequest, DecisionOut

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["authorization"])


def build_target(req: AccessCheckRequest) -> Optional[Target]:
    """Assemble the target the action expects from the flat request body; None when fields are missing."""
    kind = rule_for(req.action).target_type
    permissions = PermissionSet.from_mapping(req.permissions) if req.permissions else None

    if kind is RoleTarget and req.role_id:
        return RoleTarget(role_id=req.role_id, permissions=permissions)
    if kind is NewRoleTarget:
        return NewRoleTarget(permissions=permissions)
    if kind is MemberTarget and req.member_id:
        return MemberTarget(user_id=req.member_id)
    if kind is RoleAssignmentTarget and req.member_id and req.role_id:
        return RoleAssignmentTarget(user_id=req.member_id, role_id=req.role_id)
    if kind is RoleReorderTarget and req.positions:
        return RoleReorderTarget(moves=tuple((p.id, p.position) for p in req.positions))
    return None


@router.post("/access-check", response_model=DecisionOut)
async def access_check(
    tenant_id: uuid.UUID,
    payload: AccessCheckRequest,
    authz: Authorizer = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """
    Evaluate one action without performing it. Channel and category endpoints
    call this before writing. Denials come back as 200 with allow=false;
    an unevaluated decision (store failure) is a 500.
    """
    decision = await authz.decide(user_id, tenant_id, payload.action, build_target(payload))
    if decision.reason is DenyReason.INFRASTRUCTURE_ERROR:
        raise_for_decision(decision)

    return DecisionOut(
        allow=decision.allow,
        reason=decision.reason.value if decision.reason else None,
        permission=decision.permission.value if decision.permission else None,
        invariant=decision.invariant.value if decision.invariant else None,
        message=decision.message,
    )
