# tests/unit/test_lifecycle/test_cleanup_service.py
"""Unit tests for the cleanup sweep."""

import uuid
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError


class TestRunCleanup:
    """Tests for run_cleanup()."""

    def test_deletes_expired_and_keeps_the_rest(self, db_session, make_opportunity, now):
        """Expired records of any status go; fresh and never-expire records stay."""
        from opportunity_api.models import Opportunity
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        make_opportunity("contest", deadline=now - timedelta(days=8))
        make_opportunity("promo", created_at=now - timedelta(days=20), status="draft")
        fresh_id = make_opportunity("contest", created_at=now - timedelta(days=2)).id
        evergreen_id = make_opportunity("evergreen", created_at=now - timedelta(days=900)).id

        result = run_cleanup(db_session, CleanupConfig(), now)

        assert result.deleted_count == 2
        assert result.deleted_by_category == {"contest": 1, "promo": 1}
        assert result.skipped_never_expire == 1
        assert result.scanned_count == 4
        assert result.errors == ()
        assert result.success is True

        remaining = {o.id for o in db_session.query(Opportunity).all()}
        assert remaining == {fresh_id, evergreen_id}

    def test_removes_dependent_rows(self, db_session, make_opportunity, now):
        """Duplicate-tracking and favorite rows of deleted records are removed first."""
        from opportunity_api.models import DuplicateTracking, UserFavorite
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        expired = make_opportunity("giveaway", deadline=now - timedelta(days=30))
        kept = make_opportunity("giveaway")
        db_session.add_all(
            [
                DuplicateTracking(opportunity_id=expired.id, content_hash="a" * 64),
                DuplicateTracking(opportunity_id=kept.id, content_hash="b" * 64),
                UserFavorite(user_id="u1", opportunity_id=expired.id),
            ]
        )
        db_session.commit()

        run_cleanup(db_session, CleanupConfig(), now)

        assert db_session.query(DuplicateTracking).count() == 1
        assert db_session.query(UserFavorite).count() == 0

    def test_second_run_deletes_nothing(self, db_session, make_opportunity, now):
        """Running twice with no new data reports zero the second time."""
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        make_opportunity("contest", deadline=now - timedelta(days=10))
        make_opportunity("instant_win", created_at=now - timedelta(days=15))

        first = run_cleanup(db_session, CleanupConfig(), now)
        second = run_cleanup(db_session, CleanupConfig(), now)

        assert first.deleted_count == 2
        assert second.deleted_count == 0
        assert second.deleted_by_category == {}
        assert second.errors == ()

    def test_dry_run_changes_nothing(self, db_session, make_opportunity, now):
        from opportunity_api.models import CleanupRun, Opportunity
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        make_opportunity("contest", deadline=now - timedelta(days=10))

        result = run_cleanup(db_session, CleanupConfig(), now, dry_run=True)

        assert result.dry_run is True
        assert result.deleted_count == 1
        assert result.run_id is None
        assert db_session.query(Opportunity).count() == 1
        assert db_session.query(CleanupRun).count() == 0

    def test_unmapped_category_is_reported_not_fatal(self, db_session, make_opportunity, now):
        """A record with an unknown category becomes an error; others still go."""
        from opportunity_api.models import Opportunity
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        odd = make_opportunity("mystery", created_at=now - timedelta(days=500))
        make_opportunity("contest", deadline=now - timedelta(days=10))

        result = run_cleanup(db_session, CleanupConfig(), now)

        assert result.deleted_count == 1
        assert len(result.errors) == 1
        assert str(odd.id) in result.errors[0]
        assert db_session.query(Opportunity).filter(Opportunity.id == odd.id).count() == 1

    def test_uses_given_config(self, db_session, make_opportunity, now):
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        make_opportunity("scholarship", created_at=now - timedelta(days=10))

        result = run_cleanup(db_session, CleanupConfig(max_age_days_by_category={"scholarship": 5}), now)

        assert result.deleted_by_category == {"scholarship": 1}

    def test_timeout_stops_between_batches(self, db_session, make_opportunity, now):
        """A spent budget stops the sweep and reports what was left."""
        from opportunity_api.models import Opportunity
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        for _ in range(3):
            make_opportunity("contest", deadline=now - timedelta(days=10))

        result = run_cleanup(db_session, CleanupConfig(), now, timeout_seconds=-1)

        assert result.timed_out is True
        assert result.deleted_count == 0
        assert any("3 expired opportunities not processed" in e for e in result.errors)
        assert db_session.query(Opportunity).count() == 3

    def test_failed_batch_falls_back_to_single_deletes(self, db_session, make_opportunity, now):
        """One bad record does not abort the rest of its batch."""
        from opportunity_api.models import Opportunity
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import cleanup_service

        records = [make_opportunity("contest", deadline=now - timedelta(days=10)) for _ in range(3)]
        bad_id = records[1].id
        real_delete = cleanup_service._delete_opportunities

        def flaky_delete(db, ids):
            if len(ids) > 1 or ids[0] == bad_id:
                raise IntegrityError("DELETE FROM opportunities", {}, Exception("constraint violated"))
            return real_delete(db, ids)

        with patch.object(cleanup_service, "_delete_opportunities", side_effect=flaky_delete):
            result = cleanup_service.run_cleanup(db_session, CleanupConfig(), now)

        assert result.deleted_count == 2
        assert len(result.errors) == 1
        assert str(bad_id) in result.errors[0]
        assert [o.id for o in db_session.query(Opportunity).all()] == [bad_id]

    def test_persists_run_summary(self, db_session, make_opportunity, now):
        from opportunity_api.models import CleanupRun
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import list_cleanup_runs, run_cleanup

        make_opportunity("promo", created_at=now - timedelta(days=30))

        result = run_cleanup(db_session, CleanupConfig(), now, initiated_by="admin")

        runs = list_cleanup_runs(db_session)
        assert len(runs) == 1
        run = runs[0]
        assert isinstance(run, CleanupRun)
        assert str(run.id) == result.run_id
        assert run.initiated_by == "admin"
        assert run.deleted_count == 1
        assert run.deleted_by_category == {"promo": 1}
        assert run.timed_out is False

    def test_store_unavailable_propagates(self, now):
        from opportunity_api.errors import StoreUnavailableError
        from opportunity_api.schemas.policy import CleanupConfig
        from opportunity_api.services.lifecycle import run_cleanup

        mock_db = MagicMock()
        mock_db.query.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        with pytest.raises(StoreUnavailableError):
            run_cleanup(mock_db, CleanupConfig(), now)


class TestCleanupRunResult:
    """Tests for CleanupRunResult."""

    def test_result_is_immutable(self, now):
        from dataclasses import FrozenInstanceError

        from opportunity_api.services.lifecycle import CleanupRunResult

        result = CleanupRunResult(
            deleted_count=0,
            deleted_by_category={},
            skipped_never_expire=0,
            errors=(),
            started_at=now,
            finished_at=now,
            run_id=str(uuid.uuid4()),
        )

        with pytest.raises(FrozenInstanceError):
            result.deleted_count = 5

    def test_to_dict_reports_failure(self, now):
        from opportunity_api.services.lifecycle import CleanupRunResult

        result = CleanupRunResult(
            deleted_count=1,
            deleted_by_category={"contest": 1},
            skipped_never_expire=0,
            errors=("Opportunity x: boom",),
            started_at=now,
            finished_at=now,
        )

        data = result.to_dict()
        assert data["success"] is False
        assert data["errors"] == ["Opportunity x: boom"]
