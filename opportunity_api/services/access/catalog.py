# opportunity_api/services/access/catalog.py
"""
Catalog pages filtered through the tier evaluator.

Pages list published opportunities newest first and use an offset cursor.
The percentage gate needs each record's rank among the published records of
its scope (oldest first, ties broken by id). Ranks come from one windowed
query over the scope:

- a page filtered by category is ranked within that category, the same set
  the page paginates over
- an unfiltered page is ranked against the whole catalog, or within each
  record's own category when `percentage_scope` is "category"

Locked records are returned as redacted placeholders when
`show_locked_content` is on, otherwise they are left out. The cursor always
advances over the underlying records, so a page with omitted records may be
shorter than `limit`.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from opportunity_api.constants import CatalogLimits
from opportunity_api.database import STORE_UNAVAILABLE_ERRORS
from opportunity_api.errors import StoreUnavailableError
from opportunity_api.models import MembershipTier, Opportunity, OpportunityStatus
from opportunity_api.schemas.policy import AccessConfig
from opportunity_api.services.access.tier_evaluator import (
    CatalogPosition,
    ViewerMembership,
    has_full_access,
    lock_reason,
)
from opportunity_api.utils.categories import validate_category
from opportunity_api.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogItem:
    id: uuid.UUID
    category: str
    created_at: datetime
    locked: bool
    title: str | None = None
    deadline: datetime | None = None
    lock_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "category": self.category,
            "created_at": self.created_at,
            "locked": self.locked,
            "title": self.title,
            "deadline": self.deadline,
            "lock_reason": self.lock_reason,
        }


@dataclass
class CatalogPage:
    items: list[CatalogItem] = field(default_factory=list)
    total: int = 0
    cursor: int = 0
    next_cursor: int | None = None
    locked_count: int = 0
    full_access: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "cursor": self.cursor,
            "next_cursor": self.next_cursor,
            "locked_count": self.locked_count,
            "full_access": self.full_access,
        }


def _published():
    return Opportunity.status == OpportunityStatus.PUBLISHED.value


def _ranked_scope(category: str | None, per_category: bool):
    """
    Published records of the ranking scope with their oldest-first position.

    Columns: id, position (0-based), scope_total.
    """
    partition = Opportunity.category if per_category and category is None else None
    position = func.row_number().over(
        partition_by=partition,
        order_by=(Opportunity.created_at.asc(), Opportunity.id.asc()),
    )
    scope_total = func.count(Opportunity.id).over(partition_by=partition)

    query = select(
        Opportunity.id.label("id"),
        (position - 1).label("position"),
        scope_total.label("scope_total"),
    ).where(_published())
    if category is not None:
        query = query.where(Opportunity.category == category)
    return query.subquery("ranked")


def get_visible_page(
    db: Session,
    viewer: ViewerMembership,
    config: AccessConfig,
    *,
    cursor: int = 0,
    limit: int = CatalogLimits.DEFAULT_PAGE_SIZE,
    category: str | None = None,
    now: datetime | None = None,
) -> CatalogPage:
    """
    Return one page of the catalog as seen by `viewer`.

    Raises:
        ValidationError: unknown category filter
        StoreUnavailableError: the record store cannot be reached
    """
    now = as_utc(now) if now is not None else utcnow()
    cursor = max(0, cursor)
    limit = max(1, min(limit, CatalogLimits.MAX_PAGE_SIZE))
    if category is not None:
        category = validate_category(category).value

    full_access = not config.system_enabled or has_full_access(viewer, now)
    page = CatalogPage(cursor=cursor, full_access=full_access)
    ranked = _ranked_scope(category, per_category=config.percentage_scope == "category")

    try:
        page.total = db.query(func.count(ranked.c.id)).scalar() or 0
        rows = (
            db.query(Opportunity, ranked.c.position, ranked.c.scope_total)
            .join(ranked, ranked.c.id == Opportunity.id)
            .order_by(Opportunity.created_at.desc(), Opportunity.id.desc())
            .offset(cursor)
            .limit(limit)
            .all()
        )
    except STORE_UNAVAILABLE_ERRORS as e:
        raise StoreUnavailableError(f"Could not read catalog: {e}") from e

    for record, index, scope_total in rows:
        if full_access:
            reason = None
        else:
            position = CatalogPosition(index=index, total=scope_total)
            reason = lock_reason(record, viewer, config, position, now)

        if reason is None:
            page.items.append(
                CatalogItem(
                    id=record.id,
                    category=record.category,
                    created_at=as_utc(record.created_at),
                    locked=False,
                    title=record.title,
                    deadline=as_utc(record.deadline),
                )
            )
            continue

        page.locked_count += 1
        if config.show_locked_content:
            page.items.append(
                CatalogItem(
                    id=record.id,
                    category=record.category,
                    created_at=as_utc(record.created_at),
                    locked=True,
                    lock_reason=reason.value,
                )
            )

    if cursor + limit < page.total:
        page.next_cursor = cursor + limit

    logger.debug(
        f"Catalog page cursor={cursor} limit={limit}: {len(page.items)} items, {page.locked_count} locked",
        extra={"event": "catalog_page", "category": category, "viewer_tier": MembershipTier(viewer.tier).value},
    )
    return page
