"""API Routers for the work-order platform."""

from app.routers.auth import router as auth_router
from app.routers.companies import router as companies_router
from app.routers.users import router as users_router
from app.routers.buildings import router as buildings_router
from app.routers.spaces import router as spaces_router
from app.routers.occupants import router as occupants_router
from app.routers.entitlements import router as entitlements_router
from app.routers.invitations import router as invitations_router
from app.routers.tickets import router as tickets_router
from app.routers.admin import router as admin_router

__all__ = [
    "auth_router",
    "companies_router",
    "users_router",
    "buildings_router",
    "spaces_router",
    "occupants_router",
    "entitlements_router",
    "invitations_router",
    "tickets_router",
    "admin_router",
]
