# app/api/v1/router.py
from fastapi import APIRouter
from app.api.v1.endpoints import auth, health, batch, presets, credits

# Create API v1 router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(
    health.router,
    tags=["Health"]
)

api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"]
)

api_router.include_router(
    batch.router,
    prefix="/batch",
    tags=["Batch Processing"]
)

api_router.include_router(
    presets.router,
    prefix="/presets",
    tags=["Presets"]
)

api_router.include_router(
    credits.router,
    prefix="/credits",
    tags=["Credits"]
)
