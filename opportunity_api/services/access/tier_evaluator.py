# opportunity_api/services/access/tier_evaluator.py
"""
Tiered access decisions.

Pure functions: the access policy and the record's catalog position are
passed in, nothing is read from the store here.

Free viewers see a record only when it passes the gates:
- delay gate: the record is at least `free_delay_hours` old
- percentage gate: the record is among the oldest
  floor(total * free_content_percentage / 100) records of its scope

`gate_combination` decides whether both gates ("all") or either ("any")
must pass. Full-access viewers and a disabled system skip the gates.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from opportunity_api.models import MembershipTier, OpportunityStatus
from opportunity_api.schemas.policy import AccessConfig
from opportunity_api.utils.timeutil import as_utc


class GatedRecord(Protocol):
    status: str
    created_at: datetime


class LockReason(str, Enum):
    UNPUBLISHED = "unpublished"
    DELAY = "delay"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class ViewerMembership:
    """The viewer's membership as known to the caller."""

    tier: MembershipTier = MembershipTier.FREE
    expires_at: datetime | None = None


@dataclass(frozen=True)
class CatalogPosition:
    """0-based rank of a record (oldest first) among `total` records of its scope."""

    index: int
    total: int


def has_full_access(viewer: ViewerMembership, now: datetime) -> bool:
    """
    Lifetime always; premium while not expired.

    A premium membership without an expiry is an admin grant and counts as
    active. Free, basic and expired premium viewers are free viewers.
    """
    tier = MembershipTier(viewer.tier)
    if tier is MembershipTier.LIFETIME:
        return True
    if tier is MembershipTier.PREMIUM:
        expires = as_utc(viewer.expires_at)
        return expires is None or expires > as_utc(now)
    return False


def passes_delay_gate(record: GatedRecord, config: AccessConfig, now: datetime) -> bool:
    return as_utc(now) - as_utc(record.created_at) >= timedelta(hours=config.free_delay_hours)


def free_slot_count(total: int, config: AccessConfig) -> int:
    """How many of `total` records (oldest first) are open to free viewers."""
    return total * config.free_content_percentage // 100


def passes_percentage_gate(position: CatalogPosition, config: AccessConfig) -> bool:
    return position.index < free_slot_count(position.total, config)


def lock_reason(
    record: GatedRecord,
    viewer: ViewerMembership,
    config: AccessConfig,
    position: CatalogPosition,
    now: datetime,
) -> LockReason | None:
    """Return why the record is hidden from the viewer, or None if it is visible."""
    if record.status != OpportunityStatus.PUBLISHED.value:
        return LockReason.UNPUBLISHED
    if not config.system_enabled or has_full_access(viewer, now):
        return None

    delay_ok = passes_delay_gate(record, config, now)
    percentage_ok = passes_percentage_gate(position, config)

    if config.gate_combination == "any":
        if delay_ok or percentage_ok:
            return None
        return LockReason.DELAY

    if not delay_ok:
        return LockReason.DELAY
    if not percentage_ok:
        return LockReason.PERCENTAGE
    return None


def is_visible(
    record: GatedRecord,
    viewer: ViewerMembership,
    config: AccessConfig,
    position: CatalogPosition,
    now: datetime,
) -> bool:
    return lock_reason(record, viewer, config, position, now) is None


def can_add_favorite(viewer: ViewerMembership, current_count: int, config: AccessConfig, now: datetime) -> bool:
    if not config.system_enabled or has_full_access(viewer, now):
        return True
    return current_count < config.free_favorites_limit


def remaining_favorites(
    viewer: ViewerMembership, current_count: int, config: AccessConfig, now: datetime
) -> int | None:
    """Favorites the viewer may still add; None means unlimited."""
    if not config.system_enabled or has_full_access(viewer, now):
        return None
    return max(0, config.free_favorites_limit - current_count)
