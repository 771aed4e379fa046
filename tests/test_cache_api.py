"""Tests for cache administration and metrics endpoints."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.core.metrics import get_operation_stats
from app.db.supabase_client import get_supabase
from app.main import app


@pytest.fixture
def client():
    app.dependency_overrides[get_supabase] = lambda: MagicMock()
    yield TestClient(app)
    app.dependency_overrides.pop(get_supabase, None)


@pytest.fixture
def mock_cache_db():
    with patch("app.core.semantic_cache.cache_db") as mock:
        yield mock


class TestCacheEndpoints:
    def test_stats_merge_both_tiers(self, client, mock_cache_db):
        mock_cache_db.get_cache_stats.return_value = {"live_entries": 3, "total_hits": 9, "avg_hit_count": 3.0}

        response = client.get("/v1/cache/stats", params={"user_id": "user-a"})

        assert response.status_code == 200
        data = response.json()
        assert data["live_entries"] == 3
        assert data["memory_entries"] == 0
        assert data["ttl_seconds"] == 86_400

    def test_clear_user_cache(self, client, mock_cache_db):
        mock_cache_db.delete_user_cache.return_value = 5

        response = client.delete("/v1/cache", params={"user_id": "user-a"})

        assert response.json() == {"user_id": "user-a", "deleted": 5}

    def test_cleanup_expired(self, client, mock_cache_db):
        mock_cache_db.cleanup_expired_cache.return_value = 11

        response = client.post("/v1/cache/cleanup")

        assert response.json() == {"deleted": 11}

    def test_cleanup_failure_is_500(self, client, mock_cache_db):
        mock_cache_db.cleanup_expired_cache.side_effect = Exception("rpc missing")

        response = client.post("/v1/cache/cleanup")

        assert response.status_code == 500

    def test_user_id_required(self, client):
        assert client.delete("/v1/cache").status_code == 422


def test_metrics_endpoint_reports_recorded_operations(client):
    stats = get_operation_stats()
    stats.record("chat_request", 120.0, True)
    stats.record("chat_request", 80.0, False)

    response = client.get("/v1/metrics")

    assert response.status_code == 200
    (summary,) = response.json()
    assert summary["operation"] == "chat_request"
    assert summary["count"] == 2
    assert summary["success_rate"] == 0.5
