"""Health check endpoint."""

from fastapi import APIRouter, Request

from services.tripcrew.routers._envelope import ok

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    settings = request.app.state.settings
    return ok(
        request,
        {
            "status": "healthy",
            "version": settings.app_version,
            "database": getattr(request.app.state, "db_session_factory", None) is not None,
            "redis": getattr(request.app.state, "redis", None) is not None,
        },
    )
