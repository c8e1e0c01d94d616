"""Common schemas used across the API.

Every endpoint answers with the same envelope: ``success``, ``message`` and
either ``data`` (success) or ``error`` (failure kind, when exposed).
"""

from datetime import datetime, timezone
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    """
    Standard error response format.

    Attributes:
        message: Human-readable error message
        error: Machine-readable failure kind, omitted when it would leak
            which validation step failed
    """
    success: bool = False
    message: str = Field(..., description="Human-readable error description")
    error: Optional[str] = Field(
        None,
        description="Machine-readable error kind for programmatic error handling"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"success": False, "message": "Unauthorized", "error": None},
                {
                    "success": False,
                    "message": "User with this email already exists",
                    "error": "DUPLICATE_REGISTRATION",
                },
            ]
        }
    }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    mode: str
    version: str = "1.0.0"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
