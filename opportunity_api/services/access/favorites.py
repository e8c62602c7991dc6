# opportunity_api/services/access/favorites.py
"""
Favorites quota gate.

The free-tier limit is enforced when a favorite is created. Favorites that
already exist are never hidden or removed when a viewer drops to the free
tier or the limit is lowered.

Concurrent adds for one viewer are serialized with a transaction-scoped
advisory lock on PostgreSQL. The count is checked again after the insert is
flushed, so the limit holds even if two requests pass the first check.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from opportunity_api.database import STORE_UNAVAILABLE_ERRORS
from opportunity_api.errors import FavoritesLimitError, StoreUnavailableError, ValidationError
from opportunity_api.models import MembershipTier, Opportunity, OpportunityStatus, UserFavorite
from opportunity_api.schemas.policy import AccessConfig
from opportunity_api.services.access.tier_evaluator import (
    ViewerMembership,
    can_add_favorite,
    remaining_favorites,
)
from opportunity_api.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FavoriteAdded:
    favorite_id: uuid.UUID
    opportunity_id: uuid.UUID
    favorites_count: int
    remaining: int | None


def count_favorites(db: Session, user_id: str) -> int:
    try:
        return db.query(func.count(UserFavorite.id)).filter(UserFavorite.user_id == user_id).scalar() or 0
    except STORE_UNAVAILABLE_ERRORS as e:
        raise StoreUnavailableError(f"Could not count favorites: {e}") from e


def _lock_user_favorites(db: Session, user_id: str) -> None:
    """Hold a per-viewer lock until the current transaction ends (PostgreSQL only)."""
    if db.get_bind().dialect.name == "postgresql":
        db.execute(select(func.pg_advisory_xact_lock(func.hashtext(f"user_favorites:{user_id}"))))


def add_favorite(
    db: Session,
    user_id: str,
    opportunity_id: uuid.UUID,
    viewer: ViewerMembership,
    config: AccessConfig,
    now: datetime | None = None,
) -> FavoriteAdded:
    """
    Save an opportunity for a viewer.

    Raises:
        ValidationError: missing/unpublished opportunity or already a favorite
        FavoritesLimitError: a free viewer already holds the maximum
        StoreUnavailableError: the record store cannot be reached
    """
    now = as_utc(now) if now is not None else utcnow()
    if not user_id:
        raise ValidationError("user_id is required", field="user_id")

    try:
        _lock_user_favorites(db, user_id)

        opportunity = db.query(Opportunity).filter(Opportunity.id == opportunity_id).first()
        if opportunity is None or opportunity.status != OpportunityStatus.PUBLISHED.value:
            db.rollback()
            raise ValidationError(f"Opportunity {opportunity_id} not found", field="opportunity_id")

        existing = (
            db.query(UserFavorite)
            .filter(UserFavorite.user_id == user_id, UserFavorite.opportunity_id == opportunity_id)
            .first()
        )
        if existing is not None:
            db.rollback()
            raise ValidationError("Opportunity is already in favorites", field="opportunity_id")
    except STORE_UNAVAILABLE_ERRORS as e:
        db.rollback()
        raise StoreUnavailableError(f"Could not add favorite: {e}") from e

    current = count_favorites(db, user_id)
    if not can_add_favorite(viewer, current, config, now):
        db.rollback()
        _log_limit_reached(user_id, current, viewer, config)
        raise FavoritesLimitError(config.free_favorites_limit)

    favorite = UserFavorite(id=uuid.uuid4(), user_id=user_id, opportunity_id=opportunity_id, created_at=now)
    try:
        db.add(favorite)
        db.flush()

        # A concurrent add may have landed between the check and the insert.
        held = count_favorites(db, user_id)
        limited = remaining_favorites(viewer, held, config, now) is not None
        if limited and held > config.free_favorites_limit:
            db.rollback()
            _log_limit_reached(user_id, held - 1, viewer, config)
            raise FavoritesLimitError(config.free_favorites_limit)

        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Opportunity is already in favorites", field="opportunity_id") from None
    except STORE_UNAVAILABLE_ERRORS as e:
        db.rollback()
        raise StoreUnavailableError(f"Could not add favorite: {e}") from e

    return FavoriteAdded(
        favorite_id=favorite.id,
        opportunity_id=opportunity_id,
        favorites_count=held,
        remaining=remaining_favorites(viewer, held, config, now),
    )


def _log_limit_reached(user_id: str, held: int, viewer: ViewerMembership, config: AccessConfig) -> None:
    logger.info(
        f"Favorites limit reached for user {user_id} ({held}/{config.free_favorites_limit})",
        extra={"event": "favorites_limit", "viewer_tier": MembershipTier(viewer.tier).value},
    )
