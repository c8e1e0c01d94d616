"""
Translation of service outcomes into HTTP responses.

STATUS_BY_CATEGORY is the only place an ErrorCategory becomes a status code.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings
from services.errors import AuthFailure, ErrorCategory

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.AUTH: status.HTTP_401_UNAUTHORIZED,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.SERVER: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

GENERIC_AUTH_MESSAGE = "Unauthorized"
GENERIC_SERVER_MESSAGE = "Internal server error"

MAX_ERROR_STRING_CHARS = 400
MAX_ERROR_CONTAINER_ITEMS = 50
MAX_ERROR_DEPTH = 8


def status_for(failure: AuthFailure) -> int:
    return STATUS_BY_CATEGORY[failure.category]


def failure_body(failure: AuthFailure, settings: Settings) -> dict:
    """
    Build the error envelope.

    Outside development, auth and server failures are reported without the
    kind so a caller cannot tell which validation step rejected the token.
    """
    if settings.is_dev or failure.category in (
        ErrorCategory.VALIDATION,
        ErrorCategory.NOT_FOUND,
    ):
        return {"success": False, "message": failure.message, "error": failure.kind.value}

    if failure.category == ErrorCategory.AUTH:
        return {"success": False, "message": GENERIC_AUTH_MESSAGE, "error": None}
    return {"success": False, "message": GENERIC_SERVER_MESSAGE, "error": None}


def failure_response(failure: AuthFailure, settings: Settings) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(failure),
        content=failure_body(failure, settings),
    )


def _truncate_string(value: str, max_chars: int = MAX_ERROR_STRING_CHARS) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}…(truncated)"


def _sanitize_for_json(value: Any, *, _depth: int = 0) -> Any:
    """
    Make sure error payloads are always UTF-8 encodable.

    RequestValidationError details can include user-provided strings, and
    unpaired surrogates would crash the JSON encoder. Large reflected inputs
    are truncated.
    """
    if _depth > MAX_ERROR_DEPTH:
        return "<max depth reached>"
    if value is None:
        return None
    if isinstance(value, (int, float, bool)):
        return value
    if isinstance(value, str):
        safe = value.encode("utf-8", errors="replace").decode("utf-8", errors="replace")
        return _truncate_string(safe)
    if isinstance(value, bytes):
        return _truncate_string(value.decode("utf-8", errors="replace"))
    if isinstance(value, (list, tuple, set)):
        items = list(value)
        out = [_sanitize_for_json(v, _depth=_depth + 1) for v in items[:MAX_ERROR_CONTAINER_ITEMS]]
        if len(items) > MAX_ERROR_CONTAINER_ITEMS:
            out.append(f"... ({len(items) - MAX_ERROR_CONTAINER_ITEMS} more items truncated)")
        return out
    if isinstance(value, dict):
        items = list(value.items())
        out: dict[str, Any] = {}
        for k, v in items[:MAX_ERROR_CONTAINER_ITEMS]:
            out[str(_sanitize_for_json(k, _depth=_depth + 1))] = _sanitize_for_json(v, _depth=_depth + 1)
        if len(items) > MAX_ERROR_CONTAINER_ITEMS:
            out["__truncated__"] = f"{len(items) - MAX_ERROR_CONTAINER_ITEMS} more keys truncated"
        return out
    # Validation contexts can carry exception instances
    return _sanitize_for_json(str(value), _depth=_depth + 1)


def _redact_secrets(errors: list) -> list:
    """Drop echoed input for password fields."""
    for error in errors:
        loc = error.get("loc") or ()
        if any(isinstance(part, str) and "password" in part for part in loc):
            error.pop("input", None)
    return errors


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        safe_errors = _sanitize_for_json(_redact_secrets(list(exc.errors())))
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "message": "Validation failed",
                "error": "VALIDATION_ERROR",
                "detail": safe_errors,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail), "error": None},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = str(exc) if settings.is_dev and settings.DEBUG else GENERIC_SERVER_MESSAGE
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": message, "error": None},
        )
