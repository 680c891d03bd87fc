from __future__ import annotations

from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from hearth.auth.actions import Action


class RolePositionRef(BaseModel):
    id: UUID
    position: int


class AccessCheckRequest(BaseModel):
    """
    Gate used by endpoints outside this service (channels, categories, ...).
    Supply only the target fields the action needs.
    """

    action: Action
    role_id: Optional[UUID] = None
    member_id: Optional[str] = Field(default=None, description="Internal UUID or public user id")
    permissions: Optional[Dict[str, bool]] = None
    positions: Optional[List[RolePositionRef]] = None


class DecisionOut(BaseModel):
    allow: bool
    reason: Optional[str] = None
    permission: Optional[str] = None
    invariant: Optional[str] = None
    message: Optional[str] = None
