from .admin_role import AdminRole
from .approval_request import ApprovalRequest
from .audit_log import AuditLog
from .base import Base
from .user import User

__all__ = [
    "AdminRole",
    "ApprovalRequest",
    "AuditLog",
    "Base",
    "User",
]
