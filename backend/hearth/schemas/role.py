from __future__ import annotations

import re
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from hearth.auth.permissions import DEFAULT_ROLE_COLOR, Permission

COLOR_REGEX = re.compile(r"^#[0-9A-Fa-f]{6}$")

_FLAGS = {p.value for p in Permission}


def _check_color(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not COLOR_REGEX.match(v):
        raise ValueError("color must be a hex color like #99AAB5")
    return v.upper()


def _check_flags(v: Optional[Dict[str, bool]]) -> Optional[Dict[str, bool]]:
    if v is None:
        return None
    unknown = sorted(set(v) - _FLAGS)
    if unknown:
        raise ValueError(f"Unknown permission flag(s): {unknown}")
    return v


class RoleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: str = Field(default=DEFAULT_ROLE_COLOR)
    # omitted => new-role template
    permissions: Optional[Dict[str, bool]] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return _check_color(v)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: Optional[Dict[str, bool]]) -> Optional[Dict[str, bool]]:
        return _check_flags(v)


class RoleUpdate(BaseModel):
    # Optional updates; permissions is a partial {flag: bool} merged over the current set
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: Optional[Dict[str, bool]]) -> Optional[Dict[str, bool]]:
        return _check_flags(v)


class RolePositionIn(BaseModel):
    id: UUID
    position: int = Field(ge=0)


class RoleReorder(BaseModel):
    roles: List[RolePositionIn] = Field(min_length=1)


class RoleOut(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    color: str
    position: int
    is_default: bool
    permissions: Dict[str, bool]
