from .common import ApiResponse, ErrorResponse, HealthResponse
from .user import (
    AccessTokenData,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    SessionData,
    UpdatePasswordRequest,
    UserResponse,
)

__all__ = [
    # Common
    "ApiResponse",
    "ErrorResponse",
    "HealthResponse",
    # User / auth
    "AccessTokenData",
    "LoginRequest",
    "RefreshTokenRequest",
    "RegisterRequest",
    "SessionData",
    "UpdatePasswordRequest",
    "UserResponse",
]
