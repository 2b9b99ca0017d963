from fastapi import APIRouter
from datetime import datetime, timezone
from app.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring

    Returns service status and basic information
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": {
            "debug": settings.DEBUG,
            "log_level": settings.LOG_LEVEL,
            "dispatcher": settings.DISPATCHER_BACKEND
        }
    }


@router.get("/")
async def root():
    """
    Root endpoint with API information
    """
    return {
        "message": f"{settings.APP_NAME} is running",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/api/v1/health",
        "login": "/api/v1/auth/login",
        "endpoints": {
            "create_batch": "/api/v1/batch (requires authentication)",
            "presets": "/api/v1/presets (requires authentication)"
        }
    }
