"""
API routes for the cabinet portal sync.
"""

from fastapi import APIRouter

from cabinet_portal.api.integrations import router as integrations_router
from cabinet_portal.api.sync import router as sync_router

# Main API router
api_router = APIRouter(prefix="/api/v1")

# Include sub-routers
api_router.include_router(integrations_router)
api_router.include_router(sync_router)

__all__ = ["api_router"]
