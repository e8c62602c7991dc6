# opportunity_api/schemas/policy.py
"""
Policy documents for cleanup and tiered access.

Both documents are validated here, at the boundary, so evaluators can trust
every value they receive. Ranges are rejected, never clamped.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from opportunity_api.constants import NEVER_EXPIRE, AccessDefaults, CleanupDefaults
from opportunity_api.models import OpportunityCategory


def _default_max_age() -> dict[OpportunityCategory, int]:
    return {OpportunityCategory(k): v for k, v in CleanupDefaults.MAX_AGE_DAYS_BY_CATEGORY.items()}


# -----------------------------------------------------------------------------
# Cleanup
# -----------------------------------------------------------------------------


class CleanupConfig(BaseModel):
    """
    Expiration policy.

    Records with a deadline expire `grace_days_after_deadline` days after it.
    Records without one expire after their category's max age; `-1` means
    the category never expires.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    grace_days_after_deadline: int = Field(
        CleanupDefaults.GRACE_DAYS_AFTER_DEADLINE,
        ge=0,
        description="Days a record is kept after its deadline passes",
    )
    max_age_days_by_category: dict[OpportunityCategory, int] = Field(
        default_factory=_default_max_age,
        description="Max age in days for records without a deadline (-1 = never expire)",
    )

    @field_validator("max_age_days_by_category")
    @classmethod
    def complete_category_map(cls, v: dict[OpportunityCategory, int]) -> dict[OpportunityCategory, int]:
        """Reject invalid day counts and fill missing categories from the fallback table."""
        for category, days in v.items():
            if days != NEVER_EXPIRE and days < 1:
                raise ValueError(
                    f"{category.value}: max age must be a positive number of days or {NEVER_EXPIRE} (never expire), got {days}"
                )
        merged = _default_max_age()
        merged.update(v)
        return merged


# -----------------------------------------------------------------------------
# Access
# -----------------------------------------------------------------------------


class AccessConfig(BaseModel):
    """
    Membership gating policy for free viewers.

    When `system_enabled` is false every viewer is fully entitled and the
    remaining fields are kept but ignored.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    system_enabled: bool = Field(AccessDefaults.SYSTEM_ENABLED, description="Master switch for tiered access")
    free_content_percentage: int = Field(
        AccessDefaults.FREE_CONTENT_PERCENTAGE,
        ge=1,
        le=100,
        description="Share of the catalog (oldest first) open to free viewers",
    )
    free_delay_hours: int = Field(
        AccessDefaults.FREE_DELAY_HOURS,
        ge=0,
        description="Hours after creation before free viewers can see a record",
    )
    free_favorites_limit: int = Field(
        AccessDefaults.FREE_FAVORITES_LIMIT,
        ge=1,
        description="Max favorites a free viewer may hold",
    )
    gate_combination: Literal["all", "any"] = Field(
        AccessDefaults.GATE_COMBINATION,
        description="'all': both delay and percentage gates must pass; 'any': either is enough",
    )
    percentage_scope: Literal["global", "category"] = Field(
        AccessDefaults.PERCENTAGE_SCOPE,
        description="Rank records against the whole catalog or within their category",
    )
    show_locked_content: bool = Field(
        AccessDefaults.SHOW_LOCKED_CONTENT,
        description="Return locked records as redacted placeholders instead of omitting them",
    )


# -----------------------------------------------------------------------------
# Stored document envelope
# -----------------------------------------------------------------------------


class PolicyEnvelope(BaseModel):
    """A policy document plus its store metadata."""

    key: str
    version: int = Field(..., description="0 when the built-in defaults are in effect")
    updated_at: datetime | None = None
    updated_by: str | None = None


class CleanupPolicyResponse(PolicyEnvelope):
    config: CleanupConfig


class AccessPolicyResponse(PolicyEnvelope):
    config: AccessConfig
