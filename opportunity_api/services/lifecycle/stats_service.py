# opportunity_api/services/lifecycle/stats_service.py
"""
Expiration statistics for operator dashboards.

Built on the same `expires_at` rule the cleanup sweep uses, so
`expired_count` is exactly what the next sweep would delete (minus records
whose category is misconfigured, which are counted under `misconfigured`).
Read-only.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from opportunity_api.constants import StatsWindows
from opportunity_api.database import STORE_UNAVAILABLE_ERRORS
from opportunity_api.errors import ConfigurationError, StoreUnavailableError
from opportunity_api.models import Opportunity
from opportunity_api.schemas.policy import CleanupConfig
from opportunity_api.services.lifecycle.expiration import expires_at
from opportunity_api.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CategoryStats:
    total: int = 0
    expired: int = 0
    expiring_in_7_days: int = 0
    expiring_in_30_days: int = 0


@dataclass
class ExpirationStats:
    """Snapshot of how the catalog sits against the cleanup policy."""

    expired_count: int = 0
    expiring_in_7_days: int = 0
    expiring_in_30_days: int = 0
    no_deadline_count: int = 0
    never_expire_count: int = 0
    misconfigured: int = 0
    total: int = 0
    by_category: dict[str, CategoryStats] = field(default_factory=dict)
    generated_at: datetime | None = None


def get_expiration_stats(db: Session, config: CleanupConfig, now: datetime | None = None) -> ExpirationStats:
    """
    Count expired and soon-to-expire opportunities.

    The expiring buckets are cumulative: a record expiring in 3 days is
    counted in both the 7-day and the 30-day bucket.
    """
    now = as_utc(now) if now is not None else utcnow()
    soon = now + timedelta(days=StatsWindows.EXPIRING_SOON_DAYS)
    later = now + timedelta(days=StatsWindows.EXPIRING_LATER_DAYS)

    try:
        rows = db.query(Opportunity.category, Opportunity.created_at, Opportunity.deadline).all()
    except STORE_UNAVAILABLE_ERRORS as e:
        raise StoreUnavailableError(f"Could not read opportunities for stats: {e}") from e

    stats = ExpirationStats(generated_at=now)

    for row in rows:
        stats.total += 1
        per_category = stats.by_category.setdefault(row.category, CategoryStats())
        per_category.total += 1

        if row.deadline is None:
            stats.no_deadline_count += 1

        try:
            expiry = expires_at(row, config)
        except ConfigurationError:
            stats.misconfigured += 1
            continue

        if expiry is None:
            stats.never_expire_count += 1
        elif now > expiry:
            stats.expired_count += 1
            per_category.expired += 1
        else:
            if expiry <= soon:
                stats.expiring_in_7_days += 1
                per_category.expiring_in_7_days += 1
            if expiry <= later:
                stats.expiring_in_30_days += 1
                per_category.expiring_in_30_days += 1

    if stats.misconfigured:
        logger.warning(f"{stats.misconfigured} opportunities have a category without a cleanup rule")

    return stats
