"""
Tests for the fixed-window rate limiter and its middleware.
"""

import asyncio
import sqlite3
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mcp_bridge.ratelimit import RateLimitMiddleware, RateLimitResult, SQLiteRateLimiter, get_client_ip


@pytest.fixture
async def limiter() -> SQLiteRateLimiter:
    store = SQLiteRateLimiter()
    await store.initialize()
    return store


class TestSQLiteRateLimiter:
    """Tests for window accounting."""

    async def test_allows_up_to_limit_then_denies(self, limiter):
        results = [await limiter.check_and_increment("1.2.3.4:/token", 3, 60) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert all(r.limit == 3 for r in results)

    async def test_concurrent_requests_never_exceed_limit(self, limiter):
        """Test that N parallel checks against a limit of N-1 allow exactly N-1."""
        results = await asyncio.gather(
            *(limiter.check_and_increment("ip:/register", 9, 60) for _ in range(10))
        )
        assert sum(1 for r in results if r.allowed) == 9

    async def test_identifiers_are_independent(self, limiter):
        await limiter.check_and_increment("a:/token", 1, 60)
        assert (await limiter.check_and_increment("a:/token", 1, 60)).allowed is False
        assert (await limiter.check_and_increment("b:/token", 1, 60)).allowed is True

    async def test_window_resets_after_expiry(self, limiter):
        now = time.time()
        await limiter._check_and_increment("ip:/authorize", 1, 60, now)
        assert (await limiter._check_and_increment("ip:/authorize", 1, 60, now + 1)).allowed is False

        result = await limiter._check_and_increment("ip:/authorize", 1, 60, now + 61)
        assert result.allowed is True
        assert result.reset_at == pytest.approx(now + 121)

    async def test_purge_removes_elapsed_windows(self, limiter):
        await limiter._check_and_increment("old", 5, 60, time.time() - 120)
        await limiter.check_and_increment("fresh", 5, 60)
        assert await limiter.purge_expired() == 1

    async def test_backend_failure_fails_open(self):
        class BrokenLimiter(SQLiteRateLimiter):
            async def _check_and_increment(self, identifier, max_requests, window_seconds, now):
                raise sqlite3.OperationalError("database is locked")

        result = await BrokenLimiter().check_and_increment("ip:/token", 5, 60)
        assert result.allowed is True
        assert result.remaining == 4

    def test_retry_after_is_at_least_one_second(self):
        result = RateLimitResult(allowed=False, limit=1, remaining=0, reset_at=100.2)
        assert result.retry_after_seconds(now=100.0) == 1
        assert result.retry_after_seconds(now=90.0) == 11


def _build_app(limiter: SQLiteRateLimiter) -> FastAPI:
    app = FastAPI()
    app.state.rate_limiter = limiter
    app.add_middleware(RateLimitMiddleware, limits={"/limited": 2}, window_seconds=60)

    @app.get("/limited")
    async def limited():
        return {"ok": True}

    @app.get("/open")
    async def open_route():
        return {"ok": True}

    return app


class TestRateLimitMiddleware:
    """Tests for the HTTP surface of rate limiting."""

    def test_returns_429_with_retry_after(self):
        client = TestClient(_build_app(SQLiteRateLimiter()))

        first = client.get("/limited")
        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"

        client.get("/limited")
        denied = client.get("/limited")
        assert denied.status_code == 429
        body = denied.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["retry_after"] >= 1
        assert int(denied.headers["Retry-After"]) == body["retry_after"]
        assert denied.headers["X-RateLimit-Remaining"] == "0"

    def test_unlisted_paths_are_not_limited(self):
        client = TestClient(_build_app(SQLiteRateLimiter()))
        for _ in range(5):
            response = client.get("/open")
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers

    def test_forwarded_for_separates_callers(self):
        client = TestClient(_build_app(SQLiteRateLimiter()))
        for _ in range(2):
            client.get("/limited", headers={"X-Forwarded-For": "10.0.0.1"})
        assert client.get("/limited", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
        assert client.get("/limited", headers={"X-Forwarded-For": "10.0.0.2, 172.16.0.1"}).status_code == 200


class TestClientIp:
    """Tests for caller address extraction."""

    def _request(self, headers):
        from starlette.requests import Request

        scope = {
            "type": "http",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": ("192.168.1.5", 5000),
        }
        return Request(scope)

    def test_prefers_first_forwarded_address(self):
        assert get_client_ip(self._request({"X-Forwarded-For": "1.1.1.1, 2.2.2.2"})) == "1.1.1.1"

    def test_falls_back_to_real_ip_then_peer(self):
        assert get_client_ip(self._request({"X-Real-IP": "3.3.3.3"})) == "3.3.3.3"
        assert get_client_ip(self._request({})) == "192.168.1.5"
