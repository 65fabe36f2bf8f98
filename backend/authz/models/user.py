import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from authz.auth.roles import UserRole

from .base import Base

if TYPE_CHECKING:
    from .admin_role import AdminRole


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default=UserRole.VIEWER.value, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    admin_roles: Mapped[list["AdminRole"]] = relationship(
        "AdminRole",
        foreign_keys="AdminRole.user_id",
        back_populates="user",
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('ADMIN', 'CREATOR', 'BRAND', 'VIEWER')",
            name="valid_role",
        ),
    )

    @validates("role")
    def validate_role(self, key: str, value: str) -> str:
        allowed = {role.value for role in UserRole}
        if value not in allowed:
            raise ValueError(
                f"Invalid role '{value}'. Must be one of: {', '.join(sorted(allowed))}"
            )
        return value
