# opportunity_api/models.py
"""
Opportunity lifecycle database models

Tables:
- Opportunity: time-bound offer records (contests, jobs, scholarships, ...)
- RssFeed: upstream feed sources with processing counters
- ProcessingHistory: per-feed log of processed items
- DuplicateTracking: fingerprints used by ingestion to skip duplicates
- UserFavorite: opportunities saved by a viewer
- SystemSetting: versioned key -> JSON documents (policy store)
- CleanupRun: immutable summary of each cleanup sweep

Opportunities are created by the ingestion pipeline, never by this service.
"""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from opportunity_api.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class OpportunityCategory(str, Enum):
    """Fixed set of opportunity categories."""

    CONTEST = "contest"
    GIVEAWAY = "giveaway"
    SWEEPSTAKES = "sweepstakes"
    DREAM_JOB = "dream_job"
    GET_PAID_TO = "get_paid_to"
    INSTANT_WIN = "instant_win"
    JOB_FAIR = "job_fair"
    SCHOLARSHIP = "scholarship"
    VOLUNTEER = "volunteer"
    FREE_TRAINING = "free_training"
    PROMO = "promo"
    EVERGREEN = "evergreen"

    @classmethod
    def values(cls) -> list[str]:
        return [c.value for c in cls]


class OpportunityStatus(str, Enum):
    """Editorial status of an opportunity."""

    DRAFT = "draft"
    PUBLISHED = "published"
    REJECTED = "rejected"


class MembershipTier(str, Enum):
    """Viewer membership levels."""

    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    LIFETIME = "lifetime"


class FeedOutputType(str, Enum):
    """What a feed produces. Only opportunity feeds belong to a category."""

    OPPORTUNITY = "opportunity"
    POST = "post"


# -----------------------------------------------------------------------------
# Feeds
# -----------------------------------------------------------------------------


class RssFeed(Base):
    """Upstream feed source. Counters are reset by category bulk deletion."""

    __tablename__ = "rss_feeds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=True)
    category = Column(String(32), nullable=True, index=True)
    output_type = Column(String(32), nullable=False, default=FeedOutputType.OPPORTUNITY.value)

    total_processed = Column(Integer, nullable=False, default=0)
    total_published = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    last_fetched = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_rss_feeds_category_output", "category", "output_type"),)


class ProcessingHistory(Base):
    """One processed feed item."""

    __tablename__ = "processing_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    feed_id = Column(Uuid, ForeignKey("rss_feeds.id"), nullable=False, index=True)
    item_url = Column(Text, nullable=True)
    outcome = Column(String(32), nullable=True)  # published, skipped, failed
    processed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


# -----------------------------------------------------------------------------
# Opportunities
# -----------------------------------------------------------------------------


class Opportunity(Base):
    """
    A transient offer record.

    Records in any status are subject to expiration; only published records
    appear in the tiered catalog.
    """

    __tablename__ = "opportunities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    category = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=OpportunityStatus.DRAFT.value)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=True)
    feed_id = Column(Uuid, ForeignKey("rss_feeds.id"), nullable=True, index=True)

    __table_args__ = (
        Index("ix_opportunities_category", "category"),
        Index("ix_opportunities_status_created", "status", "created_at"),
        Index("ix_opportunities_deadline", "deadline"),
    )


class DuplicateTracking(Base):
    """Ingestion fingerprint. Removed together with its opportunity."""

    __tablename__ = "duplicate_tracking"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    opportunity_id = Column(Uuid, ForeignKey("opportunities.id"), nullable=True, index=True)
    feed_id = Column(Uuid, ForeignKey("rss_feeds.id"), nullable=True, index=True)
    content_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class UserFavorite(Base):
    """An opportunity saved by a viewer."""

    __tablename__ = "user_favorites"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    opportunity_id = Column(Uuid, ForeignKey("opportunities.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "opportunity_id", name="uq_user_favorites_user_opportunity"),)


# -----------------------------------------------------------------------------
# Policy store & run history
# -----------------------------------------------------------------------------


class SystemSetting(Base):
    """
    Versioned key -> JSON document.

    The policy documents live under well-known keys (see PolicyKeys).
    `version` increments on every save.
    """

    __tablename__ = "system_settings"

    key = Column(String(128), primary_key=True)
    value = Column(JSON, nullable=False)
    category = Column(String(64), nullable=False, default="general")
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    updated_by = Column(String(64), nullable=True)


class CleanupRun(Base):
    """Summary of one cleanup sweep. Written once, never updated."""

    __tablename__ = "cleanup_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=False)
    initiated_by = Column(String(32), nullable=False, default="scheduler")
    scanned_count = Column(Integer, nullable=False, default=0)
    deleted_count = Column(Integer, nullable=False, default=0)
    deleted_by_category = Column(JSON, nullable=False, default=dict)
    skipped_never_expire = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    timed_out = Column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("ix_cleanup_runs_started_at", "started_at"),)
