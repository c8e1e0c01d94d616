"""Middleware package for request logging and rate limiting."""

from .logging import RequestLoggingMiddleware, configure_request_logging
from .rate_limit import InMemoryRateLimiter, RateLimitMiddleware, get_client_ip

__all__ = [
    "InMemoryRateLimiter",
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
    "configure_request_logging",
    "get_client_ip",
]
