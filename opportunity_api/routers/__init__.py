# opportunity_api/routers/__init__.py
"""
API routers for v1 endpoints.
"""

from opportunity_api.routers.access import router as access_router
from opportunity_api.routers.admin_lifecycle import router as admin_lifecycle_router

__all__ = [
    "access_router",
    "admin_lifecycle_router",
]
