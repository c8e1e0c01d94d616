"""Request/Response logging middleware for development and debugging.

Only enabled in development mode. Request bodies are never logged: every
interesting body on this service carries a password or a token.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger("api.requests")

# Paths to exclude from logging (noisy endpoints)
EXCLUDED_PATHS = {
    "/health",
    "/",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
}

SENSITIVE_PARAMS = ("token", "refresh_token", "password", "key")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one line per request: request id, method, path, client, status and
    duration. The request id is echoed back in X-Request-ID.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        request_id = str(uuid.uuid4())[:8]
        start_time = time.time()

        method = request.method
        query_params = dict(request.query_params)
        client_ip = request.client.host if request.client else "unknown"

        log_parts = [f"[{request_id}]", f"{method} {request.url.path}"]
        if query_params:
            sanitized_params = {
                k: ("***" if k.lower() in SENSITIVE_PARAMS else v)
                for k, v in query_params.items()
            }
            log_parts.append(f"params={sanitized_params}")
        log_parts.append(f"client={client_ip}")
        request_desc = " ".join(log_parts)

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"{request_desc} - ERROR ({duration:.3f}s): {e}")
            raise

        duration = time.time() - start_time
        status_class = response.status_code // 100

        if status_class == 5:
            log_func = logger.error
        elif status_class == 4:
            log_func = logger.warning
        elif method == "GET":
            log_func = logger.debug
        else:
            log_func = logger.info

        log_func(f"{request_desc} - {response.status_code} ({duration:.3f}s)")

        response.headers["X-Request-ID"] = request_id
        return response


def configure_request_logging(log_level: str = "INFO") -> None:
    """Set up the request logger's level and handler once at startup."""
    request_logger = logging.getLogger("api.requests")
    request_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # Prevent duplicate emission via root logger handlers.
    request_logger.propagate = False

    if not request_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )
        request_logger.addHandler(handler)
