"""
Tests for the rate limiter and client address resolution.
"""

import pytest
from fastapi import Request
from httpx import ASGITransport, AsyncClient

from conftest import CLIENT_UA, STRONG_PASSWORD, make_settings
from main import create_app
from middleware.rate_limit import InMemoryRateLimiter, get_client_ip, parse_trusted_proxies


def _make_request(client_host: str = "127.0.0.1", headers: dict[str, str] | None = None) -> Request:
    hdrs = [(b"host", b"test")]
    if headers:
        hdrs.extend([(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()])

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/v1/auth/refresh",
        "raw_path": b"/api/v1/auth/refresh",
        "query_string": b"",
        "headers": hdrs,
        "client": (client_host, 12345),
        "server": ("test", 80),
    }
    return Request(scope)


class FakeTime:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestInMemoryRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        limiter = InMemoryRateLimiter(time_func=FakeTime())

        results = [await limiter.is_allowed("k", 3, 60) for _ in range(4)]

        assert [r[0] for r in results] == [True, True, True, False]
        assert [r[1] for r in results[:3]] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_retry_after_counts_down_to_window_end(self):
        fake_time = FakeTime()
        limiter = InMemoryRateLimiter(time_func=fake_time)
        await limiter.is_allowed("k", 1, 60)

        fake_time.now += 20
        allowed, remaining, retry_after = await limiter.is_allowed("k", 1, 60)

        assert not allowed
        assert remaining == 0
        assert retry_after == 41

    @pytest.mark.asyncio
    async def test_window_slides(self):
        fake_time = FakeTime()
        limiter = InMemoryRateLimiter(time_func=fake_time)
        await limiter.is_allowed("k", 1, 60)

        fake_time.now += 61

        assert (await limiter.is_allowed("k", 1, 60))[0]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter(time_func=FakeTime())
        await limiter.is_allowed("a", 1, 60)

        assert (await limiter.is_allowed("b", 1, 60))[0]

    @pytest.mark.asyncio
    async def test_reset(self):
        limiter = InMemoryRateLimiter(time_func=FakeTime())
        await limiter.is_allowed("a", 1, 60)
        await limiter.is_allowed("b", 1, 60)

        limiter.reset("a")
        assert (await limiter.is_allowed("a", 1, 60))[0]
        assert not (await limiter.is_allowed("b", 1, 60))[0]

        limiter.reset()
        assert (await limiter.is_allowed("b", 1, 60))[0]

    @pytest.mark.asyncio
    async def test_lru_eviction_bounds_memory(self):
        limiter = InMemoryRateLimiter(time_func=FakeTime())
        limiter.MAX_KEYS = 200

        for i in range(250):
            await limiter.is_allowed(f"k{i}", 5, 60)

        assert len(limiter._requests) <= 200
        assert "k249" in limiter._requests


class TestParseTrustedProxies:
    def test_empty(self):
        assert parse_trusted_proxies(None) == []
        assert parse_trusted_proxies("") == []

    def test_skips_invalid_entries(self):
        networks = parse_trusted_proxies("10.0.0.0/8, bogus, ,192.168.1.1")
        assert [str(n) for n in networks] == ["10.0.0.0/8", "192.168.1.1/32"]


class TestGetClientIp:
    def test_untrusted_peer_ignores_forwarded_for(self):
        request = _make_request("198.51.100.9", {"X-Forwarded-For": "203.0.113.1"})
        assert get_client_ip(request, parse_trusted_proxies("127.0.0.1/32")) == "198.51.100.9"

    def test_no_trusted_proxies_by_default(self):
        request = _make_request("127.0.0.1", {"X-Forwarded-For": "203.0.113.1"})
        assert get_client_ip(request, []) == "127.0.0.1"

    def test_trusted_peer_uses_forwarded_for(self):
        request = _make_request("127.0.0.1", {"X-Forwarded-For": "203.0.113.1"})
        assert get_client_ip(request, parse_trusted_proxies("127.0.0.1/32")) == "203.0.113.1"

    def test_rightmost_untrusted_hop_wins(self):
        """A client-supplied leftmost entry cannot spoof the address."""
        request = _make_request(
            "10.0.0.2", {"X-Forwarded-For": "1.2.3.4, 203.0.113.1, 10.0.0.5"}
        )
        assert get_client_ip(request, parse_trusted_proxies("10.0.0.0/8")) == "203.0.113.1"

    def test_invalid_hops_are_skipped(self):
        request = _make_request("127.0.0.1", {"X-Forwarded-For": "203.0.113.1, junk"})
        assert get_client_ip(request, parse_trusted_proxies("127.0.0.1/32")) == "203.0.113.1"

    def test_x_real_ip_fallback(self):
        request = _make_request("127.0.0.1", {"X-Real-IP": "203.0.113.8"})
        assert get_client_ip(request, parse_trusted_proxies("127.0.0.1/32")) == "203.0.113.8"


class TestRateLimitMiddleware:
    @pytest.mark.asyncio
    async def test_login_is_limited_per_ip(self, tmp_path, clock):
        from db.database import create_engine_from_settings, init_db

        settings = make_settings(
            DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'limit.db'}",
            RATE_LIMIT_ENABLED=True,
            RATE_LIMIT_AUTH=2,
        )
        engine = create_engine_from_settings(settings)
        await init_db(engine)
        app = create_app(settings, clock=clock, engine=engine)
        body = {"email": "nobody@x", "password": STRONG_PASSWORD}
        try:
            async with AsyncClient(
                transport=ASGITransport(app=app),
                base_url="http://test",
                headers={"User-Agent": CLIENT_UA},
            ) as client:
                first_ip = {"X-Forwarded-For": "203.0.113.1"}
                responses = [
                    await client.post("/api/v1/auth/login", json=body, headers=first_ip)
                    for _ in range(3)
                ]
                other_ip = await client.post(
                    "/api/v1/auth/login",
                    json=body,
                    headers={"X-Forwarded-For": "203.0.113.2"},
                )
                health = await client.get("/health")
        finally:
            await engine.dispose()

        assert [r.status_code for r in responses] == [401, 401, 429]
        limited = responses[2]
        assert int(limited.headers["Retry-After"]) >= 1
        assert limited.json()["success"] is False
        assert limited.json()["retry_after"] >= 1
        assert other_ip.status_code == 401
        assert health.status_code == 200
