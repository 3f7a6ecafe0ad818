from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sinopulse.core.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for the load balancer.

    Returns 503 during graceful shutdown so traffic drains before exit.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "sinopulse-backend"},
        )
    return {"status": "healthy", "service": "sinopulse-backend"}


@router.get("/ready")
async def readiness_check():
    """Readiness check - verifies the archive and generation backend are configured."""
    settings = get_settings()
    checks = {
        "artifact_store": bool(settings.r2_bucket_name),
        "generation_backend": settings.generation_backend == "fake" or bool(settings.anthropic_api_key),
    }

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
