import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..auth.roles import ApprovalStatus, Department


class ApprovalRequestCreate(BaseModel):
    action_type: str = Field(..., min_length=1, max_length=100)
    department: Department
    payload: dict[str, Any]
    metadata: dict[str, Any] | None = None


class ApprovalDecision(BaseModel):
    comments: str | None = Field(None, max_length=2000)


class ApprovalRejection(BaseModel):
    comments: str = Field(..., min_length=1, max_length=2000)


class ApprovalRequestResponse(BaseModel):
    id: uuid.UUID
    action_type: str
    requested_by: uuid.UUID
    department: Department
    payload: dict[str, Any]
    status: ApprovalStatus
    reviewed_by: uuid.UUID | None
    reviewed_at: datetime | None
    review_comments: str | None
    metadata: dict[str, Any] | None = Field(None, validation_alias="request_metadata")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ApprovalStatistics(BaseModel):
    pending: int
    approved: int
    rejected: int
    total: int
