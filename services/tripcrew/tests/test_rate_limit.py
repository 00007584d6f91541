"""
Unit tests: Redis sliding-window rate limiter.

Validates:
- Tier selection: anonymous by IP, authenticated by X-User-Id, QR scan tier
- 429 envelope with Retry-After once the window is full
- /health exempt; no Redis means pass-through
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from services.tripcrew.config import settings
from services.tripcrew.middleware.rate_limit import (
    RateLimitMiddleware,
    get_client_key,
    get_rate_limit,
)

pytestmark = pytest.mark.asyncio


def _request(headers: dict | None = None, client=("10.0.0.5", 1234)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def _redis(current_count: int) -> AsyncMock:
    redis = AsyncMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[None, current_count, None, None])
    redis.pipeline = MagicMock(return_value=pipe)
    return redis


def _app(redis_client) -> FastAPI:
    app = FastAPI()

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/events/{event_id}")
    async def event(event_id: int):
        return {"id": event_id}

    @app.post("/steps/{step_id}/scan")
    async def scan(step_id: int):
        return {"id": step_id}

    app.add_middleware(RateLimitMiddleware, redis_client=redis_client)
    return app


async def _call(app, method: str, path: str, headers: dict | None = None):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        return await ac.request(method, path, headers=headers)


class TestTiers:
    async def test_anonymous(self):
        assert get_rate_limit("/events/1", False) == (settings.rate_limit_anon_per_min, "anon")

    async def test_authenticated(self):
        assert get_rate_limit("/events/1", True) == (settings.rate_limit_auth_per_min, "auth")

    async def test_scan(self):
        assert get_rate_limit("/steps/5/scan", True) == (settings.rate_limit_scan_per_min, "scan")

    async def test_client_key_prefers_user_id(self):
        assert get_client_key(_request({"X-User-Id": "9"})) == ("user:9", True)

    async def test_client_key_forwarded_ip(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_key(request) == ("ip:203.0.113.7", False)

    async def test_non_numeric_user_id_is_anonymous(self):
        assert get_client_key(_request({"X-User-Id": "abc"})) == ("ip:10.0.0.5", False)


class TestMiddleware:
    async def test_under_limit_passes_with_headers(self):
        redis = _redis(current_count=3)
        response = await _call(_app(redis), "GET", "/events/1", {"X-User-Id": "9"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == str(settings.rate_limit_auth_per_min)
        assert response.headers["X-RateLimit-Remaining"] == str(settings.rate_limit_auth_per_min - 4)
        pipe = redis.pipeline.return_value
        assert pipe.zcard.call_args.args[0] == "ratelimit:auth:user:9"

    async def test_full_window_returns_429(self):
        redis = _redis(current_count=settings.rate_limit_scan_per_min)
        response = await _call(_app(redis), "POST", "/steps/5/scan", {"X-User-Id": "9"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "RATE_LIMITED"
        assert redis.pipeline.return_value.zcard.call_args.args[0] == "ratelimit:scan:user:9"

    async def test_health_exempt(self):
        redis = _redis(current_count=10_000)
        response = await _call(_app(redis), "GET", "/health")
        assert response.status_code == 200
        redis.pipeline.assert_not_called()

    async def test_without_redis_passes_through(self):
        response = await _call(_app(None), "GET", "/events/1")
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
