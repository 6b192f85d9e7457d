"""
API v1 Router

All org-scoped endpoints are prefixed with /orgs/{orgSlug}.
"""

from fastapi import APIRouter
from . import branches, members
from .organizations import router_global as orgs_global_router
from .organizations import router_scoped as orgs_scoped_router

router = APIRouter()

# Organization routes (non-org-scoped: list, create)
router.include_router(orgs_global_router)

# Organization routes (org-scoped: details)
router.include_router(orgs_scoped_router, prefix="/orgs/{orgSlug}", tags=["Organizations"])

router.include_router(members.router, prefix="/orgs/{orgSlug}", tags=["Members"])
router.include_router(branches.router, prefix="/orgs/{orgSlug}", tags=["Branches"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/orgs",
            "/orgs/{orgSlug}",
            "/orgs/{orgSlug}/members",
            "/orgs/{orgSlug}/invitations/{invitationId}/resend",
            "/orgs/{orgSlug}/branches",
            "/orgs/{orgSlug}/branch-members",
        ],
    }
