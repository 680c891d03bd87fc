from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class TenantCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = " ".join(v.strip().split())
        if len(v) < 2:
            raise ValueError("Tenant name must be at least 2 characters")
        return v


class TenantOut(BaseModel):
    id: UUID
    name: str
    owner_id: UUID
    default_role_id: UUID

    model_config = {"from_attributes": True}
