"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()


def _llm_providers(request: Request) -> list:
    orchestrator = getattr(request.app.state, "llm", None)
    return orchestrator.available_providers() if orchestrator is not None else []


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns overall system health status.
    """
    providers = _llm_providers(request)
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "llm_providers": providers,
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    if not providers:
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Kubernetes-style readiness probe."""
    if not _llm_providers(request):
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": ["LLM provider API key"]},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
