# opportunity_api/services/access/__init__.py
"""
Tiered access services.

- tier_evaluator: pure visibility and favorites-quota decisions
- catalog: paginated catalog filtered for one viewer
- favorites: quota-checked favorite creation
"""

from opportunity_api.services.access.catalog import CatalogItem, CatalogPage, get_visible_page
from opportunity_api.services.access.favorites import FavoriteAdded, add_favorite, count_favorites
from opportunity_api.services.access.tier_evaluator import (
    CatalogPosition,
    LockReason,
    ViewerMembership,
    can_add_favorite,
    has_full_access,
    is_visible,
    lock_reason,
    passes_delay_gate,
    passes_percentage_gate,
    remaining_favorites,
)

__all__ = [
    "ViewerMembership",
    "CatalogPosition",
    "LockReason",
    "has_full_access",
    "passes_delay_gate",
    "passes_percentage_gate",
    "is_visible",
    "lock_reason",
    "can_add_favorite",
    "remaining_favorites",
    "get_visible_page",
    "CatalogPage",
    "CatalogItem",
    "add_favorite",
    "count_favorites",
    "FavoriteAdded",
]
