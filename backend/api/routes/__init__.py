"""API Routes."""

from fastapi import APIRouter

from .billing import router as billing_router
from .coach import router as coach_router
from .focus import router as focus_router
from .health import router as health_router

# Create main API router
api_router = APIRouter()

api_router.include_router(health_router, tags=["Health"])
api_router.include_router(billing_router)
api_router.include_router(coach_router)
api_router.include_router(focus_router)
