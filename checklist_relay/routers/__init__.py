"""API router package."""

from fastapi import APIRouter

from .groups import router as groups_router
from .health import router as health_router
from .observability import router as observability_router
from .uploads import router as uploads_router

api_router = APIRouter()
api_router.include_router(groups_router)
api_router.include_router(uploads_router)
api_router.include_router(health_router)
api_router.include_router(observability_router)

__all__ = ["api_router"]
