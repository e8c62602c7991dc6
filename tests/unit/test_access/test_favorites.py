# tests/unit/test_access/test_favorites.py
"""Unit tests for favorites quota enforcement."""

import uuid
from unittest.mock import MagicMock, patch

import pytest


class TestAddFavorite:
    """Tests for add_favorite()."""

    def test_free_viewer_blocked_at_limit(self, db_session, make_opportunity, now):
        """Five favorites allowed, the sixth is rejected."""
        from opportunity_api.errors import FavoritesLimitError, ValidationError
        from opportunity_api.models import UserFavorite
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite

        config = AccessConfig(free_favorites_limit=5)
        viewer = ViewerMembership()
        opportunities = [make_opportunity("contest").id for _ in range(6)]

        results = [add_favorite(db_session, "u1", oid, viewer, config, now) for oid in opportunities[:5]]

        assert [r.remaining for r in results] == [4, 3, 2, 1, 0]
        with pytest.raises(FavoritesLimitError) as exc_info:
            add_favorite(db_session, "u1", opportunities[5], viewer, config, now)

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.limit == 5
        assert db_session.query(UserFavorite).filter(UserFavorite.user_id == "u1").count() == 5

    def test_limit_is_per_user(self, db_session, make_opportunity, now):
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite

        config = AccessConfig(free_favorites_limit=1)
        oid = make_opportunity("contest").id

        add_favorite(db_session, "u1", oid, ViewerMembership(), config, now)
        added = add_favorite(db_session, "u2", oid, ViewerMembership(), config, now)

        assert added.favorites_count == 1

    def test_full_access_unlimited(self, db_session, make_opportunity, now):
        from opportunity_api.models import MembershipTier
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite

        config = AccessConfig(free_favorites_limit=1)
        viewer = ViewerMembership(tier=MembershipTier.LIFETIME)

        for _ in range(3):
            added = add_favorite(db_session, "u1", make_opportunity("promo").id, viewer, config, now)

        assert added.favorites_count == 3
        assert added.remaining is None

    def test_existing_favorites_kept_after_downgrade(self, db_session, make_opportunity, now):
        """Lowering the limit blocks new favorites but never removes old ones."""
        from opportunity_api.errors import FavoritesLimitError
        from opportunity_api.models import MembershipTier, UserFavorite
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite

        premium = ViewerMembership(tier=MembershipTier.PREMIUM)
        for _ in range(3):
            add_favorite(db_session, "u1", make_opportunity("promo").id, premium, AccessConfig(), now)

        with pytest.raises(FavoritesLimitError):
            add_favorite(
                db_session, "u1", make_opportunity("promo").id, ViewerMembership(), AccessConfig(free_favorites_limit=2), now
            )

        assert db_session.query(UserFavorite).count() == 3

    def test_duplicate_rejected(self, db_session, make_opportunity, now):
        from opportunity_api.errors import ValidationError
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite

        oid = make_opportunity("contest").id
        add_favorite(db_session, "u1", oid, ViewerMembership(), AccessConfig(), now)

        with pytest.raises(ValidationError) as exc_info:
            add_favorite(db_session, "u1", oid, ViewerMembership(), AccessConfig(), now)

        assert "already" in exc_info.value.message

    @pytest.mark.parametrize("status", ["draft", "rejected"])
    def test_unpublished_rejected(self, db_session, make_opportunity, now, status):
        from opportunity_api.errors import ValidationError
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite

        oid = make_opportunity("contest", status=status).id

        with pytest.raises(ValidationError) as exc_info:
            add_favorite(db_session, "u1", oid, ViewerMembership(), AccessConfig(), now)

        assert exc_info.value.field == "opportunity_id"

    def test_missing_rejected(self, db_session, now):
        from opportunity_api.errors import ValidationError
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite

        with pytest.raises(ValidationError):
            add_favorite(db_session, "u1", uuid.uuid4(), ViewerMembership(), AccessConfig(), now)

    def test_add_racing_past_first_check_is_undone(self, db_session, make_opportunity, now):
        """A second add that slipped past the first count is rolled back by the recount."""
        from opportunity_api.errors import FavoritesLimitError
        from opportunity_api.models import UserFavorite
        from opportunity_api.schemas.policy import AccessConfig
        from opportunity_api.services.access import ViewerMembership, add_favorite, favorites

        config = AccessConfig(free_favorites_limit=2)
        for _ in range(2):
            add_favorite(db_session, "u1", make_opportunity("contest").id, ViewerMembership(), config, now)
        late = make_opportunity("contest").id

        # The first check sees a stale count, as a concurrent request would
        with patch.object(favorites, "can_add_favorite", return_value=True):
            with pytest.raises(FavoritesLimitError):
                add_favorite(db_session, "u1", late, ViewerMembership(), config, now)

        held = db_session.query(UserFavorite).filter(UserFavorite.user_id == "u1").all()
        assert len(held) == 2
        assert late not in {f.opportunity_id for f in held}


class TestLockUserFavorites:
    """Tests for _lock_user_favorites()."""

    def test_takes_advisory_lock_on_postgres(self):
        from opportunity_api.services.access.favorites import _lock_user_favorites

        db = MagicMock()
        db.get_bind.return_value.dialect.name = "postgresql"

        _lock_user_favorites(db, "u1")

        db.execute.assert_called_once()
        assert "pg_advisory_xact_lock" in str(db.execute.call_args.args[0])

    def test_no_lock_on_sqlite(self):
        from opportunity_api.services.access.favorites import _lock_user_favorites

        db = MagicMock()
        db.get_bind.return_value.dialect.name = "sqlite"

        _lock_user_favorites(db, "u1")

        db.execute.assert_not_called()
