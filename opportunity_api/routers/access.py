# opportunity_api/routers/access.py
"""
Membership access endpoints.

GET  /v1/access/limits     - Free-tier limits in effect
GET  /v1/access/visible    - Catalog page as seen by a viewer
POST /v1/access/favorites  - Add a favorite (free-tier quota enforced)
"""

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from opportunity_api.constants import CatalogLimits
from opportunity_api.database import get_db
from opportunity_api.errors import LifecycleError
from opportunity_api.models import MembershipTier
from opportunity_api.routers.http_errors import to_http_exception
from opportunity_api.services.access import ViewerMembership, add_favorite, get_visible_page
from opportunity_api.services.policy_store import PolicyStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/access", tags=["access"])


# -----------------------------------------------------------------------------
# Request / Response Models
# -----------------------------------------------------------------------------


class AccessLimitsResponse(BaseModel):
    """Public view of the access policy."""

    system_enabled: bool
    free_content_percentage: int
    free_delay_hours: int
    free_favorites_limit: int
    show_locked_content: bool


class CatalogItemResponse(BaseModel):
    id: str
    category: str
    created_at: datetime
    locked: bool
    title: str | None = None
    deadline: datetime | None = None
    lock_reason: str | None = None


class CatalogPageResponse(BaseModel):
    items: list[CatalogItemResponse]
    total: int
    cursor: int
    next_cursor: int | None = None
    locked_count: int
    full_access: bool


class FavoriteRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    opportunity_id: uuid.UUID
    viewer_tier: MembershipTier = MembershipTier.FREE
    membership_expires_at: datetime | None = None


class FavoriteResponse(BaseModel):
    favorite_id: uuid.UUID
    opportunity_id: uuid.UUID
    favorites_count: int
    remaining: int | None = Field(None, description="None when the viewer has no limit")


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.get("/limits", response_model=AccessLimitsResponse)
def get_access_limits(db: Session = Depends(get_db)) -> AccessLimitsResponse:
    """Limits that apply to free viewers right now."""
    try:
        config = PolicyStore(db).get_access_config()
    except LifecycleError as e:
        raise to_http_exception(e) from e

    return AccessLimitsResponse(
        system_enabled=config.system_enabled,
        free_content_percentage=config.free_content_percentage,
        free_delay_hours=config.free_delay_hours,
        free_favorites_limit=config.free_favorites_limit,
        show_locked_content=config.show_locked_content,
    )


@router.get("/visible", response_model=CatalogPageResponse)
def get_visible(
    viewer_tier: MembershipTier = Query(MembershipTier.FREE),
    membership_expires_at: datetime | None = Query(None),
    cursor: int = Query(0, ge=0),
    limit: int = Query(CatalogLimits.DEFAULT_PAGE_SIZE, ge=1, le=CatalogLimits.MAX_PAGE_SIZE),
    category: str | None = Query(None),
    db: Session = Depends(get_db),
) -> CatalogPageResponse:
    """
    Published opportunities, newest first, filtered for the viewer.

    Locked records come back as placeholders (`locked: true`, no title) or
    are left out, depending on the access policy.
    """
    viewer = ViewerMembership(tier=viewer_tier, expires_at=membership_expires_at)
    try:
        config = PolicyStore(db).get_access_config()
        page = get_visible_page(db, viewer, config, cursor=cursor, limit=limit, category=category)
    except LifecycleError as e:
        raise to_http_exception(e) from e
    return CatalogPageResponse(**page.to_dict())


@router.post("/favorites", response_model=FavoriteResponse, status_code=201)
def create_favorite(
    request: FavoriteRequest,
    db: Session = Depends(get_db),
) -> FavoriteResponse:
    """Save an opportunity. 403 once a free viewer holds the maximum."""
    viewer = ViewerMembership(tier=request.viewer_tier, expires_at=request.membership_expires_at)
    try:
        config = PolicyStore(db).get_access_config()
        added = add_favorite(db, request.user_id, request.opportunity_id, viewer, config)
    except LifecycleError as e:
        raise to_http_exception(e) from e

    return FavoriteResponse(
        favorite_id=added.favorite_id,
        opportunity_id=added.opportunity_id,
        favorites_count=added.favorites_count,
        remaining=added.remaining,
    )
