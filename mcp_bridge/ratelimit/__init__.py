# mcp_bridge/ratelimit/__init__.py
"""Atomic fixed-window rate limiting for the public OAuth endpoints."""

from .limiter import (
    RateLimitResult,
    AbstractRateLimiter,
    SQLiteRateLimiter,
    RedisRateLimiter,
    get_rate_limiter,
)
from .middleware import RateLimitMiddleware, get_client_ip

__all__ = [
    "RateLimitResult",
    "AbstractRateLimiter",
    "SQLiteRateLimiter",
    "RedisRateLimiter",
    "get_rate_limiter",
    "RateLimitMiddleware",
    "get_client_ip",
]
