# mcp_bridge/ratelimit/middleware.py
import logging
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .limiter import AbstractRateLimiter, RateLimitResult

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Caller address, honouring reverse-proxy headers."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Throttles the public OAuth endpoints per caller IP and path.

    ``limits`` maps a request path to its allowed requests per window.
    Paths not listed pass straight through. The limiter is looked up on
    ``app.state.rate_limiter`` so it can be created in the lifespan.
    """

    def __init__(self, app, limits: Dict[str, int], window_seconds: int):
        super().__init__(app)
        self.limits = limits
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        max_requests = self.limits.get(request.url.path)
        limiter: Optional[AbstractRateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if max_requests is None or limiter is None:
            return await call_next(request)

        identifier = f"{get_client_ip(request)}:{request.url.path}"
        result = await limiter.check_and_increment(identifier, max_requests, self.window_seconds)
        headers = rate_limit_headers(result)

        if not result.allowed:
            retry_after = result.retry_after_seconds()
            logger.warning(f"Rate limit exceeded on {request.url.path} (limit {max_requests}/{self.window_seconds}s).")
            headers["Retry-After"] = str(retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "error_description": "Too many requests. Please try again later.",
                    "retry_after": retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
