"""Rate limiting middleware and client address resolution.

Implements sliding window rate limiting for the credential endpoints.

SECURITY NOTES:
- The in-memory limiter is lost on restart and is per process. With several
  workers the effective limit is N * configured limit.
- X-Forwarded-For is only trusted when the direct peer is in TRUSTED_PROXIES.
  The same resolved address feeds the refresh token device fingerprint, so
  spoofing it must not be possible.
"""

import asyncio
import ipaddress
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from config import Settings

logger = logging.getLogger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class InMemoryRateLimiter:
    """
    Sliding window limiter keyed by arbitrary strings.

    MEMORY MANAGEMENT: once MAX_KEYS keys are tracked, the least recently
    used ones are evicted.
    """

    MAX_KEYS = 10000

    def __init__(self, time_func: Callable[[], float] = time.time):
        self._time = time_func
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._last_access: Dict[str, float] = {}  # LRU bookkeeping
        self._lock = asyncio.Lock()
        self._cleanup_interval = 60
        self._last_cleanup = self._time()

    async def is_allowed(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> Tuple[bool, int, int]:
        """
        Check if a request is allowed and record it if so.

        Returns:
            Tuple of (is_allowed, remaining_requests, retry_after_seconds)
        """
        current_time = self._time()
        window_start = current_time - window_seconds

        async with self._lock:
            if current_time - self._last_cleanup > self._cleanup_interval:
                self._cleanup(window_start)
                self._last_cleanup = current_time

            if len(self._requests) >= self.MAX_KEYS and key not in self._requests:
                self._evict_lru()

            self._last_access[key] = current_time

            request_times = self._requests[key]
            request_times[:] = [t for t in request_times if t > window_start]

            if len(request_times) >= max_requests:
                if request_times:
                    oldest = min(request_times)
                    retry_after = int(oldest + window_seconds - current_time) + 1
                else:
                    retry_after = window_seconds
                return False, 0, max(1, retry_after)

            request_times.append(current_time)
            remaining = max_requests - len(request_times)
            return True, remaining, 0

    def _evict_lru(self) -> None:
        if not self._last_access:
            return

        # Evict 10% of keys or at least 100 keys to reduce eviction frequency
        num_to_evict = max(100, len(self._requests) // 10)
        sorted_keys = sorted(self._last_access.items(), key=lambda x: x[1])
        keys_to_evict = [k for k, _ in sorted_keys[:num_to_evict]]

        for key in keys_to_evict:
            self._requests.pop(key, None)
            self._last_access.pop(key, None)

        logger.debug(f"Rate limiter LRU eviction: removed {len(keys_to_evict)} keys")

    def _cleanup(self, cutoff_time: float) -> None:
        keys_to_remove = []
        for key, timestamps in self._requests.items():
            timestamps[:] = [t for t in timestamps if t > cutoff_time]
            if not timestamps:
                keys_to_remove.append(key)
        for key in keys_to_remove:
            del self._requests[key]
            self._last_access.pop(key, None)

    def reset(self, key: Optional[str] = None) -> None:
        """Reset one key, or everything when no key is given."""
        if key is None:
            self._requests.clear()
            self._last_access.clear()
            return
        self._requests.pop(key, None)
        self._last_access.pop(key, None)


def parse_trusted_proxies(trusted_proxies: Optional[str]) -> List[IPNetwork]:
    """
    Parse a comma-separated list of CIDR networks.

    SECURITY: nothing is trusted by default. Without TRUSTED_PROXIES the
    direct peer address is the client address and forwarded headers are
    ignored.
    """
    if not trusted_proxies:
        return []

    networks = []
    for proxy in (p.strip() for p in trusted_proxies.split(",")):
        if not proxy:
            continue
        try:
            networks.append(ipaddress.ip_network(proxy, strict=False))
        except ValueError as e:
            logger.warning(f"Invalid trusted proxy network '{proxy}': {e}")
    return networks


def _is_ip_trusted(ip: str, trusted_networks: List[IPNetwork]) -> bool:
    try:
        ip_addr = ipaddress.ip_address(ip)
        return any(ip_addr in network for network in trusted_networks)
    except ValueError:
        return False


def get_client_ip(request: Request, trusted_networks: List[IPNetwork]) -> str:
    """
    Resolve the client address of a request.

    Implements the "rightmost untrusted IP" algorithm:
    1. Start with the direct connection IP
    2. If the direct IP is a trusted proxy, look at X-Forwarded-For
    3. Walk through X-Forwarded-For from right to left
    4. Stop at the first IP that is NOT a trusted proxy
    """
    direct_ip = request.client.host if request.client else None

    if not direct_ip:
        return "unknown"

    if not _is_ip_trusted(direct_ip, trusted_networks):
        return direct_ip

    forwarded_for = request.headers.get("X-Forwarded-For")

    if not forwarded_for:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            try:
                ipaddress.ip_address(ip)
                return ip
            except ValueError:
                logger.warning(f"Invalid X-Real-IP header: {real_ip}")
        return direct_ip

    ips = [ip.strip() for ip in forwarded_for.split(",")]

    for ip in reversed(ips):
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            logger.warning(f"Invalid IP in X-Forwarded-For: {ip}")
            continue

        if not _is_ip_trusted(ip, trusted_networks):
            return ip

    # Every hop is a trusted proxy; fall back to the leftmost entry
    if ips:
        try:
            ipaddress.ip_address(ips[0])
            return ips[0]
        except ValueError:
            pass

    return direct_ip


def request_client_ip(request: Request) -> str:
    """get_client_ip using the trusted proxies configured on the app."""
    return get_client_ip(request, request.app.state.trusted_networks)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-IP limits for the credential endpoints.

    - /register: RATE_LIMIT_REGISTER
    - /login: RATE_LIMIT_AUTH
    - /refresh: RATE_LIMIT_REFRESH
    Everything else passes through.
    """

    def __init__(
        self,
        app,
        settings: Settings,
        rate_limiter: Optional[InMemoryRateLimiter] = None,
        prefix: str = "/api/v1/auth",
    ):
        super().__init__(app)
        self.settings = settings
        self.rate_limiter = rate_limiter or InMemoryRateLimiter()
        self.trusted_networks = parse_trusted_proxies(settings.TRUSTED_PROXIES)
        self.limits = {
            f"{prefix}/register": ("register", settings.RATE_LIMIT_REGISTER),
            f"{prefix}/login": ("login", settings.RATE_LIMIT_AUTH),
            f"{prefix}/refresh": ("refresh", settings.RATE_LIMIT_REFRESH),
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path.rstrip("/")
        limit = self.limits.get(path)
        if not self.settings.RATE_LIMIT_ENABLED or limit is None:
            return await call_next(request)

        name, max_requests = limit
        window = self.settings.RATE_LIMIT_WINDOW
        client_ip = get_client_ip(request, self.trusted_networks)
        limit_key = f"{name}:{client_ip}"

        is_allowed, remaining, retry_after = await self.rate_limiter.is_allowed(
            limit_key, max_requests, window
        )

        if not is_allowed:
            logger.warning(
                f"Rate limit exceeded for {limit_key} (path={path}, ip={client_ip})"
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "message": "Too many requests. Please try again later.",
                    "retry_after": retry_after,
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
