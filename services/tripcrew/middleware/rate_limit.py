"""
Redis-backed sliding window rate limiter.

Tiers:
  - Anonymous: 10 req/min, keyed by client IP
  - Authenticated: 120 req/min, keyed by X-User-Id
  - QR scan (POST /steps/{id}/scan): 30 req/min per user, so a scanner
    cannot brute-force member ids

Without Redis every request passes through.
"""

import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from services.tripcrew.config import settings

SCAN_PATH = re.compile(r"^/steps/[^/]+/scan/?$")
EXEMPT_PATHS = ("/health",)
WINDOW_S = 60.0


def get_rate_limit(path: str, is_authenticated: bool) -> tuple[int, str]:
    """Return (limit_per_min, tier_name) for the given path and auth state."""
    if is_authenticated and SCAN_PATH.match(path):
        return settings.rate_limit_scan_per_min, "scan"
    if is_authenticated:
        return settings.rate_limit_auth_per_min, "auth"
    return settings.rate_limit_anon_per_min, "anon"


def get_client_key(request: Request) -> tuple[str, bool]:
    """Extract client identifier and whether the upstream auth layer identified the caller."""
    user_id = (request.headers.get("x-user-id") or "").strip()
    if user_id.isdigit():
        return f"user:{user_id}", True
    client_ip = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    return f"ip:{client_ip}", False


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding window rate limiter backed by Redis sorted sets."""

    def __init__(self, app, redis_client=None):
        super().__init__(app)
        self.redis = redis_client

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        if self.redis is None:
            return await call_next(request)

        client_key, is_authenticated = get_client_key(request)
        limit, tier = get_rate_limit(request.url.path, is_authenticated)
        window_key = f"ratelimit:{tier}:{client_key}"

        now = time.time()
        window_start = now - WINDOW_S

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(window_key, 0, window_start)
        pipe.zcard(window_key)
        pipe.zadd(window_key, {f"{now}:{id(request)}": now})
        pipe.expire(window_key, int(WINDOW_S * 2))
        results = await pipe.execute()

        current_count = results[1]

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(max(0, limit - current_count - 1)),
            "X-RateLimit-Reset": str(int(now + WINDOW_S)),
        }

        if current_count >= limit:
            headers["Retry-After"] = str(int(WINDOW_S))
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": f"Rate limit exceeded. Max {limit} requests per minute for {tier} tier.",
                    "code": "RATE_LIMITED",
                    "requestId": getattr(request.state, "request_id", ""),
                },
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response
