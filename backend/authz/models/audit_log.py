import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base

ACTOR_TYPES = ("user", "system")


class AuditLog(Base):
    """Append-only record of authorization-relevant changes and denials."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    actor_type: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="user"
    )  # 'system' for the expiry sweep
    action: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True
    )  # e.g. 'admin_role.revoke', 'permission.denied'
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(255), index=True)
    before: Mapped[dict | None] = mapped_column(JSONB)
    after: Mapped[dict | None] = mapped_column(JSONB)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    __table_args__ = (
        CheckConstraint(
            "actor_type IN ('user', 'system')",
            name="valid_actor_type",
        ),
    )

    @validates("actor_type")
    def validate_actor_type(self, key: str, value: str) -> str:
        if value not in ACTOR_TYPES:
            raise ValueError(
                f"Invalid actor_type '{value}'. Must be one of: {', '.join(ACTOR_TYPES)}"
            )
        return value
