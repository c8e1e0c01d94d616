from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from schemas.validators import (
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
    normalize_email_address,
    normalize_required_text,
    validate_password_strength,
)


class RegisterRequest(BaseModel):
    """Registration request. The role is always assigned by the server."""

    email: str = Field(..., max_length=320)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    confirm_password: str = Field(
        ..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH
    )

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return normalize_email_address(value)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def normalize_name(cls, value: str, info) -> str:
        return normalize_required_text(value, field_name=info.field_name)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_strength(value)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return normalize_email_address(value)


class RefreshTokenRequest(BaseModel):
    """Request body for refresh/logout (optional - can also use httpOnly cookie)."""

    refresh_token: Optional[str] = None


class UpdatePasswordRequest(BaseModel):
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    confirm_password: str = Field(
        ..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH
    )

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_strength(value)


class UserResponse(BaseModel):
    """User info response. Never includes the password hash."""

    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SessionData(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiration in seconds")
    user: UserResponse


class AccessTokenData(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
