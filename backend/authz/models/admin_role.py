import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from authz.auth.roles import Department, Seniority

from .base import Base

if TYPE_CHECKING:
    from .user import User


class AdminRole(Base):
    """
    Department-scoped admin grant for a user.

    Unique per (user_id, department). Rows are soft-deleted on revocation
    (deleted_at/deleted_by/deletion_reason) and never physically removed.
    A row is effective while is_active, not deleted and not expired.
    """

    __tablename__ = "admin_roles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    department: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    seniority: Mapped[str | None] = mapped_column(String(20))
    permissions: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )  # custom permissions on top of the template
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="true"
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    deletion_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    user: Mapped["User"] = relationship(
        "User",
        foreign_keys=[user_id],
        back_populates="admin_roles",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "department", name="uq_admin_roles_user_id_department"),
        CheckConstraint(
            "department IN ('SUPER_ADMIN', 'CONTENT_MANAGER', 'FINANCE_LICENSING', "
            "'CREATOR_APPLICATIONS', 'BRAND_APPLICATIONS', 'CUSTOMER_SERVICE', "
            "'OPERATIONS', 'CONTRACTOR')",
            name="valid_department",
        ),
        CheckConstraint(
            "seniority IS NULL OR seniority IN ('JUNIOR', 'SENIOR')",
            name="valid_seniority",
        ),
        CheckConstraint(
            "department <> 'CONTRACTOR' OR expires_at IS NOT NULL",
            name="contractor_requires_expiry",
        ),
        Index(
            "ix_admin_roles_effective",
            "department",
            "is_active",
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    @validates("department")
    def validate_department(self, key: str, value: str) -> str:
        allowed = {department.value for department in Department}
        if value not in allowed:
            raise ValueError(
                f"Invalid department '{value}'. Must be one of: {', '.join(sorted(allowed))}"
            )
        return value

    @validates("seniority")
    def validate_seniority(self, key: str, value: str | None) -> str | None:
        if value is None:
            return value
        allowed = {seniority.value for seniority in Seniority}
        if value not in allowed:
            raise ValueError(
                f"Invalid seniority '{value}'. Must be one of: {', '.join(sorted(allowed))}"
            )
        return value

    def is_effective_at(self, now: datetime) -> bool:
        return (
            self.is_active
            and self.deleted_at is None
            and (self.expires_at is None or self.expires_at > now)
        )
