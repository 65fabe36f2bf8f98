import uuid
from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator

from ..auth.roles import Department, Seniority, UserRole


class AdminRoleCreate(BaseModel):
    user_id: uuid.UUID
    department: Department
    seniority: Seniority | None = None
    permissions: list[str] = Field(default_factory=list)
    expires_at: AwareDatetime | None = None


class AdminRoleUpdate(BaseModel):
    seniority: Seniority | None = None
    permissions: list[str] | None = None
    is_active: bool | None = None
    expires_at: AwareDatetime | None = None

    @model_validator(mode="after")
    def require_a_field(self) -> "AdminRoleUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


class AdminRoleBulkUpdate(BaseModel):
    role_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=50)
    is_active: bool | None = None
    expires_at: AwareDatetime | None = None
    reason: str = Field(..., min_length=10, max_length=1000)

    @field_validator("role_ids")
    @classmethod
    def unique_ids(cls, value: list[uuid.UUID]) -> list[uuid.UUID]:
        if len(set(value)) != len(value):
            raise ValueError("role_ids must not contain duplicates")
        return value

    @model_validator(mode="after")
    def require_an_update(self) -> "AdminRoleBulkUpdate":
        if self.is_active is None and self.expires_at is None:
            raise ValueError("At least one of is_active or expires_at must be provided")
        return self


class AdminRoleRevoke(BaseModel):
    reason: str = Field(..., min_length=10, max_length=1000)


class ContractorExtension(BaseModel):
    new_expires_at: AwareDatetime
    reason: str = Field(..., min_length=10, max_length=1000)


class BaseRoleChange(BaseModel):
    role: UserRole


class AdminRoleResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    department: Department
    seniority: Seniority | None
    permissions: list[str]
    is_active: bool
    expires_at: datetime | None
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    deletion_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PermissionUsage(BaseModel):
    permission: str
    total_roles: int
    by_department: dict[str, int]
    user_ids: list[uuid.UUID]
