"""
Typed outcomes for the session lifecycle.

Services never raise for expected failures. They return an ``Outcome`` that
carries either a value or an ``AuthFailure`` tagged with a closed
``ErrorKind``. Each kind belongs to exactly one ``ErrorCategory``; the HTTP
layer maps categories to status codes in one place (api/errors.py).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    SERVER = "server"


class ErrorKind(str, Enum):
    EMPTY_TOKEN = "EMPTY_TOKEN"
    MALFORMED_TOKEN = "MALFORMED_TOKEN"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    REVOKED_TOKEN = "REVOKED_TOKEN"
    DEVICE_MISMATCH = "DEVICE_MISMATCH"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    DUPLICATE_REGISTRATION = "DUPLICATE_REGISTRATION"
    PASSWORD_MISMATCH = "PASSWORD_MISMATCH"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY_BY_KIND[self]

    @property
    def default_message(self) -> str:
        return _DEFAULT_MESSAGES[self]


_CATEGORY_BY_KIND = {
    ErrorKind.EMPTY_TOKEN: ErrorCategory.AUTH,
    ErrorKind.MALFORMED_TOKEN: ErrorCategory.AUTH,
    ErrorKind.EXPIRED_TOKEN: ErrorCategory.AUTH,
    ErrorKind.REVOKED_TOKEN: ErrorCategory.AUTH,
    ErrorKind.DEVICE_MISMATCH: ErrorCategory.AUTH,
    ErrorKind.AUTHENTICATION_ERROR: ErrorCategory.AUTH,
    ErrorKind.INVALID_CREDENTIALS: ErrorCategory.AUTH,
    ErrorKind.TOKEN_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorKind.USER_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorKind.DUPLICATE_REGISTRATION: ErrorCategory.VALIDATION,
    ErrorKind.PASSWORD_MISMATCH: ErrorCategory.VALIDATION,
    ErrorKind.CONFIGURATION_ERROR: ErrorCategory.SERVER,
}

_DEFAULT_MESSAGES = {
    ErrorKind.EMPTY_TOKEN: "Refresh token is required",
    ErrorKind.MALFORMED_TOKEN: "Invalid refresh token",
    ErrorKind.EXPIRED_TOKEN: "Refresh token has expired",
    ErrorKind.REVOKED_TOKEN: "Refresh token has been revoked",
    ErrorKind.DEVICE_MISMATCH: "Refresh token was issued to a different device",
    ErrorKind.TOKEN_NOT_FOUND: "Refresh token not found",
    ErrorKind.AUTHENTICATION_ERROR: "Refresh token authentication failed",
    ErrorKind.USER_NOT_FOUND: "User not found",
    ErrorKind.DUPLICATE_REGISTRATION: "User with this email already exists",
    ErrorKind.PASSWORD_MISMATCH: "Passwords do not match",
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    ErrorKind.CONFIGURATION_ERROR: "Token service is misconfigured",
}


@dataclass(frozen=True)
class AuthFailure:
    kind: ErrorKind
    message: str = ""

    def __post_init__(self):
        if not self.message:
            object.__setattr__(self, "message", self.kind.default_message)

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either ``value`` (success) or ``failure`` is set, never both."""

    value: Optional[T] = None
    failure: Optional[AuthFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str = "") -> "Outcome[T]":
        return cls(failure=AuthFailure(kind, message))
