# tests/test_api.py
"""
Contract tests for API responses.
"""

from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from opportunity_api.utils.timeutil import utcnow


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "opportunity-lifecycle-api"
        assert "X-Trace-Id" in response.headers


class TestAdminAuth:
    """Admin endpoints reject requests without the key."""

    def test_missing_key(self, client):
        response = client.get("/v1/admin/policy/cleanup")
        assert response.status_code == 401

    def test_wrong_key(self, client):
        response = client.get("/v1/admin/lifecycle/stats", headers={"X-API-Key": "nope"})
        assert response.status_code == 401

    def test_non_ascii_key_rejected(self, client):
        response = client.get("/v1/admin/lifecycle/stats", headers={"X-API-Key": "cl\u00e9".encode("utf-8")})
        assert response.status_code == 401

    def test_unconfigured_key_fails_closed(self, client, admin_headers, monkeypatch):
        monkeypatch.delenv("ADMIN_API_KEY")

        response = client.get("/v1/admin/policy/cleanup", headers=admin_headers)

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "AuthNotConfigured"

    def test_access_endpoints_are_public(self, client):
        response = client.get("/v1/access/limits")
        assert response.status_code == 200


class TestPolicyEndpoints:
    """Test policy document contracts."""

    def test_defaults_reported_as_version_zero(self, client, admin_headers):
        response = client.get("/v1/admin/policy/cleanup", headers=admin_headers)
        assert response.status_code == 200

        data = response.json()
        assert data["version"] == 0
        assert data["config"]["grace_days_after_deadline"] == 7
        assert data["config"]["max_age_days_by_category"]["evergreen"] == -1

    def test_update_merges_fields(self, client, admin_headers):
        response = client.put(
            "/v1/admin/policy/access",
            json={"config": {"free_content_percentage": 40}},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["version"] == 1

        data = client.get("/v1/admin/policy/access", headers=admin_headers).json()
        assert data["config"]["free_content_percentage"] == 40
        assert data["config"]["free_delay_hours"] == 24

    def test_invalid_value_names_field(self, client, admin_headers):
        """Out-of-range values are refused, never clamped."""
        response = client.put(
            "/v1/admin/policy/access",
            json={"config": {"free_content_percentage": 150}},
            headers=admin_headers,
        )
        assert response.status_code == 400

        detail = response.json()["detail"]
        assert detail["error"] == "ConfigurationError"
        assert detail["field"] == "free_content_percentage"

    def test_stale_version_rejected(self, client, admin_headers):
        client.put("/v1/admin/policy/cleanup", json={"config": {"grace_days_after_deadline": 3}}, headers=admin_headers)

        response = client.put(
            "/v1/admin/policy/cleanup",
            json={"config": {"grace_days_after_deadline": 5}, "expected_version": 0},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "expected_version"


class TestCleanupEndpoints:
    """Test cleanup sweep contracts."""

    def test_requires_confirm(self, client, admin_headers):
        response = client.post("/v1/admin/lifecycle/cleanup/run", json={}, headers=admin_headers)
        assert response.status_code == 400

    def test_dry_run_then_confirmed_run(self, client, admin_headers, make_opportunity):
        make_opportunity("contest", deadline=utcnow() - timedelta(days=30))
        make_opportunity("evergreen", created_at=utcnow() - timedelta(days=900))

        dry = client.post("/v1/admin/lifecycle/cleanup/run", json={"dry_run": True}, headers=admin_headers).json()
        assert dry["deleted_count"] == 1
        assert dry["run_id"] is None
        assert client.get("/v1/admin/lifecycle/cleanup/runs", headers=admin_headers).json() == []

        run = client.post("/v1/admin/lifecycle/cleanup/run", json={"confirm": True}, headers=admin_headers).json()
        assert run["success"] is True
        assert run["deleted_by_category"] == {"contest": 1}
        assert run["skipped_never_expire"] == 1

        runs = client.get("/v1/admin/lifecycle/cleanup/runs", headers=admin_headers).json()
        assert len(runs) == 1
        assert runs[0]["id"] == run["run_id"]

    def test_stats(self, client, admin_headers, make_opportunity):
        make_opportunity("contest", deadline=utcnow() - timedelta(days=30))

        response = client.get("/v1/admin/lifecycle/stats", headers=admin_headers)
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 1
        assert data["expired_count"] == 1
        assert data["by_category"]["contest"]["expired"] == 1


class TestBulkDeleteEndpoints:
    """Test bulk delete contracts."""

    def test_preview_unknown_category(self, client, admin_headers):
        response = client.get(
            "/v1/admin/lifecycle/bulk-delete/preview", params={"category": "lottery"}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "category"

    def test_preview_counts(self, client, admin_headers, make_feed, make_opportunity):
        feed = make_feed("Contest Feed")
        make_opportunity("contest", feed=feed)
        make_opportunity("contest", feed=feed)

        response = client.get(
            "/v1/admin/lifecycle/bulk-delete/preview", params={"category": "contest"}, headers=admin_headers
        )
        assert response.status_code == 200

        data = response.json()
        assert data["opportunity_count"] == 2
        assert data["affected_source_count"] == 1
        assert data["affected_sources"][0]["name"] == "Contest Feed"

    def test_mismatched_confirmation_deletes_nothing(self, client, admin_headers, db_session, make_opportunity):
        from opportunity_api.models import Opportunity

        make_opportunity("contest")

        response = client.post(
            "/v1/admin/lifecycle/bulk-delete/execute",
            json={"category": "contest", "typed_confirmation": "Contest", "acknowledged": True},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert db_session.query(Opportunity).count() == 1

    def test_missing_acknowledgement(self, client, admin_headers, make_opportunity):
        make_opportunity("contest")

        response = client.post(
            "/v1/admin/lifecycle/bulk-delete/execute",
            json={"category": "contest", "typed_confirmation": "contest"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_execute(self, client, admin_headers, make_feed, make_opportunity):
        feed = make_feed("Contest Feed")
        make_opportunity("contest", feed=feed)
        make_opportunity("promo")

        response = client.post(
            "/v1/admin/lifecycle/bulk-delete/execute",
            json={"category": "contest", "typed_confirmation": "contest", "acknowledged": True},
            headers=admin_headers,
        )
        assert response.status_code == 200

        data = response.json()
        assert data["success"] is True
        assert data["deleted_opportunities"] == 1
        assert data["reset_source_names"] == ["Contest Feed"]
        assert data["preview"]["opportunity_count"] == 1

    def test_partial_failure_returns_result(self, client, admin_headers, make_opportunity):
        from opportunity_api.services.lifecycle import bulk_delete

        make_opportunity("contest")
        failure = IntegrityError("DELETE FROM opportunities", {}, Exception("fk violation"))

        with patch.object(bulk_delete, "_delete_category_opportunities", side_effect=failure):
            response = client.post(
                "/v1/admin/lifecycle/bulk-delete/execute",
                json={"category": "contest", "typed_confirmation": "contest", "acknowledged": True},
                headers=admin_headers,
            )

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["error"] == "PartialExecutionError"
        assert detail["partial_result"]["deleted_opportunities"] == 0


class TestAccessEndpoints:
    """Test membership access contracts."""

    def test_limits_reflect_policy(self, client, admin_headers):
        client.put("/v1/admin/policy/access", json={"config": {"free_favorites_limit": 2}}, headers=admin_headers)

        data = client.get("/v1/access/limits").json()
        assert data["free_favorites_limit"] == 2
        assert data["free_content_percentage"] == 60

    def test_visible_page(self, client, make_opportunity):
        for days in (10, 9, 8, 7, 6):
            make_opportunity("contest", created_at=utcnow() - timedelta(days=days))

        free = client.get("/v1/access/visible").json()
        lifetime = client.get("/v1/access/visible", params={"viewer_tier": "lifetime"}).json()

        assert free["total"] == 5
        assert free["locked_count"] == 2
        assert free["items"][0]["locked"] is True
        assert free["items"][0]["title"] is None
        assert lifetime["locked_count"] == 0

    def test_visible_unknown_category(self, client):
        response = client.get("/v1/access/visible", params={"category": "lottery"})
        assert response.status_code == 400

    def test_favorites_quota(self, client, admin_headers, make_opportunity):
        client.put("/v1/admin/policy/access", json={"config": {"free_favorites_limit": 1}}, headers=admin_headers)
        first = make_opportunity("contest")
        second = make_opportunity("contest")

        response = client.post("/v1/access/favorites", json={"user_id": "u1", "opportunity_id": str(first.id)})
        assert response.status_code == 201
        assert response.json()["remaining"] == 0

        response = client.post("/v1/access/favorites", json={"user_id": "u1", "opportunity_id": str(second.id)})
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "FavoritesLimitError"

        response = client.post(
            "/v1/access/favorites",
            json={"user_id": "u1", "opportunity_id": str(second.id), "viewer_tier": "premium"},
        )
        assert response.status_code == 201
        assert response.json()["remaining"] is None
