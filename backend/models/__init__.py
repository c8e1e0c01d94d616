from .auth_audit import AuthAuditLog
from .refresh_token import RefreshToken
from .user import ROLE_ADMIN, ROLE_USER, USER_ROLES, User

__all__ = [
    "AuthAuditLog",
    "RefreshToken",
    "ROLE_ADMIN",
    "ROLE_USER",
    "USER_ROLES",
    "User",
]
