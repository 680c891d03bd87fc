from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class TenantMemberOut(BaseModel):
    tenant_id: UUID
    user_id: UUID
    role_ids: List[UUID] = []
    nickname: Optional[str] = None
    joined_at: Optional[datetime] = None


class MemberRoleChange(BaseModel):
    role_id: UUID
    action: Literal["add", "remove"]


class BanCreate(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class NicknameUpdate(BaseModel):
    # blank or null clears the nickname
    nickname: Optional[str] = Field(default=None, max_length=100)

    @field_validator("nickname")
    @classmethod
    def strip_nickname(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = " ".join(v.strip().split())
        return v or None


class BanOut(BaseModel):
    tenant_id: UUID
    user_id: UUID
    banned_by: Optional[UUID] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
