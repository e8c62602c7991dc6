# opportunity_api/constants.py
"""
Centralized magic constants organized by domain.

All hardcoded numbers/strings used throughout the codebase should be
defined here with documentation explaining their purpose.
"""


# Sentinel stored in max_age_days_by_category meaning "never expire"
NEVER_EXPIRE = -1


class CleanupDefaults:
    """Fallback cleanup policy used when no document has been saved yet."""

    GRACE_DAYS_AFTER_DEADLINE = 7       # Days kept after the deadline passes

    # Max age (days) for records without a deadline. Every category must be
    # listed here so a missing entry never means "keep forever".
    MAX_AGE_DAYS_BY_CATEGORY = {
        "contest": 30,
        "giveaway": 30,
        "sweepstakes": 30,
        "dream_job": 60,
        "get_paid_to": 45,
        "instant_win": 14,
        "job_fair": 30,
        "scholarship": 90,
        "volunteer": 60,
        "free_training": 60,
        "promo": 14,
        "evergreen": NEVER_EXPIRE,
    }


class AccessDefaults:
    """Fallback membership/access policy."""

    SYSTEM_ENABLED = True
    FREE_CONTENT_PERCENTAGE = 60        # Oldest 60% of the catalog is free
    FREE_DELAY_HOURS = 24               # New records locked for free viewers
    FREE_FAVORITES_LIMIT = 5
    GATE_COMBINATION = "all"            # Both gates must pass
    PERCENTAGE_SCOPE = "global"         # Rank against the whole catalog
    SHOW_LOCKED_CONTENT = True          # Return locked items as placeholders


class PolicyKeys:
    """Well-known keys of the policy documents in system_settings."""

    CLEANUP = "policy.cleanup"
    ACCESS = "policy.access"
    CATEGORY = "policy"


class StatsWindows:
    """Look-ahead windows for the expiring-soon buckets."""

    EXPIRING_SOON_DAYS = 7
    EXPIRING_LATER_DAYS = 30


class CatalogLimits:
    """Pagination bounds for the tiered catalog."""

    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100


class CleanupRunLimits:
    """Bounds for reading persisted cleanup run summaries."""

    DEFAULT_RUNS = 20
    MAX_RUNS = 100
    MAX_ERRORS_STORED = 200             # Cap on error strings kept per run row
