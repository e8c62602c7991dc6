# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import os
import uuid
from datetime import UTC, datetime, timedelta

import pytest

# Set test environment before any application import
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("LOG_JSON", "false")

NOW = datetime(2026, 6, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def now():
    """Fixed evaluation instant."""
    return NOW


@pytest.fixture
def db_session():
    """Fresh in-memory database per test."""
    from sqlalchemy.orm import sessionmaker

    from opportunity_api import models  # noqa: F401
    from opportunity_api.database import Base, build_engine

    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def _clear_policy_cache():
    from opportunity_api.services.policy_store import invalidate_policy_cache

    invalidate_policy_cache()
    yield
    invalidate_policy_cache()


@pytest.fixture(autouse=True)
def _clear_bulk_delete_guard():
    from opportunity_api.services.lifecycle.bulk_delete import BulkDeletionWorkflow

    BulkDeletionWorkflow._in_flight.clear()
    yield
    BulkDeletionWorkflow._in_flight.clear()


@pytest.fixture
def admin_headers():
    return {"X-API-Key": os.environ["ADMIN_API_KEY"]}


@pytest.fixture
def client(db_session):
    """TestClient bound to the per-test database."""
    from fastapi.testclient import TestClient

    from opportunity_api.database import get_db
    from opportunity_api.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# -----------------------------------------------------------------------------
# Seed helpers
# -----------------------------------------------------------------------------


@pytest.fixture
def make_opportunity(db_session):
    """Insert an opportunity and return it."""
    from opportunity_api.models import Opportunity

    def _make(category="contest", *, created_at=None, deadline=None, status="published", feed=None, title=None):
        opportunity = Opportunity(
            id=uuid.uuid4(),
            title=title or f"{category} opportunity",
            category=category,
            status=status,
            created_at=created_at or NOW - timedelta(days=1),
            deadline=deadline,
            feed_id=feed.id if feed is not None else None,
        )
        db_session.add(opportunity)
        db_session.commit()
        return opportunity

    return _make


@pytest.fixture
def make_feed(db_session):
    """Insert a feed with non-zero counters and return it."""
    from opportunity_api.models import RssFeed

    def _make(name="Feed", category="contest", output_type="opportunity", **counters):
        feed = RssFeed(
            id=uuid.uuid4(),
            name=name,
            url=f"https://example.com/{name.lower().replace(' ', '-')}.xml",
            category=category,
            output_type=output_type,
            total_processed=counters.get("total_processed", 10),
            total_published=counters.get("total_published", 4),
            error_count=counters.get("error_count", 1),
            last_fetched=counters.get("last_fetched", NOW - timedelta(hours=2)),
            last_error=counters.get("last_error", "timeout"),
        )
        db_session.add(feed)
        db_session.commit()
        return feed

    return _make
