"""
Trip Crew FastAPI service: event membership, check-ins, step reminders.

Entrypoint: uvicorn services.tripcrew.main:asgi_app --host 0.0.0.0 --port 8000

`asgi_app` is the Socket.IO server wrapping the FastAPI `app`; requests under
settings.socketio_path go to the realtime relay, everything else to FastAPI.
"""

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import socketio
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from services.tripcrew.config import settings
from services.tripcrew.errors import TripCrewError
from services.tripcrew.middleware.cors import setup_cors
from services.tripcrew.middleware.rate_limit import RateLimitMiddleware
from services.tripcrew.middleware.sentry import setup_sentry
from services.tripcrew.notifications.sweep import NotificationSweep
from services.tripcrew.realtime.relay import SocketIORelay, create_socket_server
from services.tripcrew.routers import checkins, events, health, join_requests, members, notifications
from services.tripcrew.routers._envelope import request_id_of

logger = logging.getLogger(__name__)
logging.getLogger("services.tripcrew").setLevel(logging.DEBUG if settings.debug else logging.INFO)


# Set during lifespan, read by the rate limiter
_redis_holder: dict = {"client": None}

sio = create_socket_server(settings.cors_origins, settings.socketio_message_queue)
relay = SocketIORelay(sio)
relay.register_handlers()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    setup_sentry()

    # Redis for rate limiting
    redis_client = None
    if settings.redis_url:
        try:
            redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            await redis_client.ping()
        except Exception as e:
            # Without Redis the rate limiter passes requests through
            logger.warning("redis_unavailable error=%s", e)
            redis_client = None

    _redis_holder["client"] = redis_client
    app.state.redis = redis_client
    app.state.settings = settings

    from services.tripcrew.db.engine import create_engine as create_sa_engine

    sa_engine = None
    session_factory = None
    if settings.database_url:
        try:
            sa_engine = create_sa_engine()
            app.state.db_engine = sa_engine
            # expire_on_commit=False: NullPool returns connection after commit,
            # lazy load on closed connection would fail without this.
            session_factory = async_sessionmaker(sa_engine, expire_on_commit=False)
            app.state.db_session_factory = session_factory
        except Exception as e:
            logger.warning("sa_engine_init_failed error=%s", e)

    relay.session_factory = session_factory
    app.state.relay = relay

    sweep_task = None
    if settings.notification_sweep_enabled and session_factory is not None:
        sweep = NotificationSweep(session_factory, relay)
        app.state.notification_sweep = sweep
        sweep_task = asyncio.create_task(
            sweep.run_periodic(settings.notification_sweep_interval_s),
            name="notification-sweep",
        )

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    if sa_engine:
        await sa_engine.dispose()
    if redis_client:
        await redis_client.aclose()


app = FastAPI(
    title="Trip Crew API",
    version=settings.app_version,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)
app.state.settings = settings

# -- Middleware (order matters: last added = outermost in Starlette) --

# Routers first (innermost)
app.include_router(health.router)
app.include_router(events.router)
app.include_router(members.router)
app.include_router(members.invitations_router)
app.include_router(join_requests.router)
app.include_router(join_requests.mine_router)
app.include_router(checkins.router)
app.include_router(notifications.router)


# Rate limiting, with the Redis client resolved per request
class _LazyRateLimitMiddleware(RateLimitMiddleware):
    """Rate limiter that picks up Redis client after lifespan init."""

    def __init__(self, app):
        super().__init__(app, redis_client=None)

    async def dispatch(self, request, call_next):
        self.redis = _redis_holder.get("client")
        return await super().dispatch(request, call_next)


app.add_middleware(_LazyRateLimitMiddleware)


# Request ID injection, outside the rate limiter so 429s carry it too
@app.middleware("http")
async def request_id_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# CORS (needs to be outermost to handle preflight)
setup_cors(app)


# -- Exception Handlers --

def _error(request: Request, status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "code": code,
            "requestId": request_id_of(request),
        },
    )


@app.exception_handler(TripCrewError)
async def domain_error_handler(request: Request, exc: TripCrewError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("domain_error path=%s code=%s", request.url.path, exc.code)
    return _error(request, exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Validation error."
    return _error(request, 422, message, "VALIDATION_ERROR")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error(request, 404, "Resource not found.", "NOT_FOUND")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed."
    return _error(request, exc.status_code, message, "HTTP_ERROR")


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error(request, 500, "An unexpected error occurred.", "INTERNAL_ERROR")


asgi_app = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path=settings.socketio_path)
