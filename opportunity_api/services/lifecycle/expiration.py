# opportunity_api/services/lifecycle/expiration.py
"""
Expiration policy evaluation.

Pure functions shared by the cleanup sweep and the expiration stats so both
always agree on which records are expired.

Rules, in order:
1. A record with a deadline expires once `now` is strictly later than
   deadline + grace days. The deadline rule wins whenever a deadline exists.
2. A record without a deadline expires once `now` is strictly later than
   created_at + its category's max age, unless the category is marked
   never-expire (-1).
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from opportunity_api.constants import NEVER_EXPIRE
from opportunity_api.errors import ConfigurationError
from opportunity_api.models import OpportunityCategory
from opportunity_api.schemas.policy import CleanupConfig
from opportunity_api.utils.timeutil import as_utc


class ExpirableRecord(Protocol):
    """Anything carrying the fields the evaluator reads (ORM row or query tuple)."""

    category: str
    created_at: datetime
    deadline: datetime | None


class ExpirationReason(str, Enum):
    """Why a record is (or is not) eligible for cleanup."""

    DEADLINE_PASSED = "deadline_passed"
    MAX_AGE_EXCEEDED = "max_age_exceeded"
    NEVER_EXPIRE = "never_expire"


def max_age_days(category: str, config: CleanupConfig) -> int:
    """
    Look up the max age for a category.

    Raises ConfigurationError when the category is not part of the fixed set
    or has no entry; an unknown category is never treated as "keep forever".
    """
    try:
        key = OpportunityCategory(category)
    except ValueError:
        raise ConfigurationError(
            "max_age_days_by_category", f"category '{category}' is not a known opportunity category"
        ) from None

    days = config.max_age_days_by_category.get(key)
    if days is None:
        raise ConfigurationError("max_age_days_by_category", f"no max age configured for category '{category}'")
    return days


def expires_at(record: ExpirableRecord, config: CleanupConfig) -> datetime | None:
    """
    Return the instant after which the record is expired, or None if it never expires.

    The record is expired for any `now` strictly greater than the returned value.
    """
    deadline = as_utc(record.deadline)
    if deadline is not None:
        return deadline + timedelta(days=config.grace_days_after_deadline)

    days = max_age_days(record.category, config)
    if days == NEVER_EXPIRE:
        return None
    return as_utc(record.created_at) + timedelta(days=days)


def should_expire(record: ExpirableRecord, config: CleanupConfig, now: datetime) -> bool:
    """Decide retain (False) or expire (True) for one record."""
    expiry = expires_at(record, config)
    if expiry is None:
        return False
    return as_utc(now) > expiry


def expiration_reason(record: ExpirableRecord, config: CleanupConfig, now: datetime) -> ExpirationReason | None:
    """
    Explain the decision for one record.

    Returns DEADLINE_PASSED / MAX_AGE_EXCEEDED for expired records,
    NEVER_EXPIRE for records exempt by the -1 sentinel, and None for records
    that are simply not expired yet.
    """
    expiry = expires_at(record, config)
    if expiry is None:
        return ExpirationReason.NEVER_EXPIRE
    if as_utc(now) <= expiry:
        return None
    if record.deadline is not None:
        return ExpirationReason.DEADLINE_PASSED
    return ExpirationReason.MAX_AGE_EXCEEDED
