"""Tests for knowledge store API endpoints."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.core.embeddings import QueryEmbedding
from app.core.schemas_context import KnowledgeFragment
from app.db.supabase_client import get_supabase
from app.main import app
from tests.fakes.fake_db import FakeDB

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def mock_supabase():
    sb = MagicMock()
    app.dependency_overrides[get_supabase] = lambda: sb
    yield sb
    app.dependency_overrides.pop(get_supabase, None)


@pytest.fixture
def client(mock_supabase):
    return TestClient(app)


@pytest.fixture
def mock_knowledge_db():
    with patch("app.api.knowledge.knowledge_db") as mock:
        yield mock


def _fragment(content="I drive a Tesla", content_type="user_fact"):
    return KnowledgeFragment(
        id=uuid4(), user_id="user-a", content=content, content_type=content_type, created_at=NOW
    )


class TestAddKnowledge:
    def test_stores_fragment_with_embedding(self, client, mock_supabase, mock_knowledge_db):
        mock_knowledge_db.add_fragment.return_value = _fragment()
        with patch(
            "app.api.knowledge.embed_query", new=AsyncMock(return_value=QueryEmbedding(vector=[0.1, 0.2]))
        ):
            response = client.post(
                "/v1/knowledge",
                params={"user_id": "user-a"},
                json={"content": "I drive a Tesla", "content_type": "user_fact", "topics": ["cars"]},
            )

        assert response.status_code == 201
        assert response.json()["degraded"] is False
        assert response.json()["fragment"]["content"] == "I drive a Tesla"
        args, kwargs = mock_knowledge_db.add_fragment.call_args
        assert args[:3] == (mock_supabase, "user-a", "I drive a Tesla")
        assert kwargs["embedding"] == [0.1, 0.2]
        assert kwargs["topics"] == ["cars"]

    def test_provider_outage_stores_without_vector(self, client, mock_knowledge_db):
        mock_knowledge_db.add_fragment.return_value = _fragment()
        with patch(
            "app.api.knowledge.embed_query",
            new=AsyncMock(return_value=QueryEmbedding(vector=None, degraded=True)),
        ):
            response = client.post(
                "/v1/knowledge", params={"user_id": "user-a"}, json={"content": "I drive a Tesla"}
            )

        assert response.status_code == 201
        assert response.json()["degraded"] is True
        assert mock_knowledge_db.add_fragment.call_args[1]["embedding"] is None

    def test_invalid_content_type_is_rejected(self, client, mock_knowledge_db):
        response = client.post(
            "/v1/knowledge", params={"user_id": "user-a"}, json={"content": "x", "content_type": "memo"}
        )

        assert response.status_code == 422
        mock_knowledge_db.add_fragment.assert_not_called()

    def test_store_failure_returns_500(self, client, mock_knowledge_db):
        mock_knowledge_db.add_fragment.side_effect = Exception("insert failed")
        with patch(
            "app.api.knowledge.embed_query", new=AsyncMock(return_value=QueryEmbedding(vector=[0.1]))
        ):
            response = client.post("/v1/knowledge", params={"user_id": "user-a"}, json={"content": "x"})

        assert response.status_code == 500


class TestBatchIngest:
    def test_batch_uses_one_embedding_call(self, client, mock_knowledge_db):
        mock_knowledge_db.add_fragments.return_value = 2
        with patch(
            "app.api.knowledge.embed_texts_async", new=AsyncMock(return_value=[[0.1], [0.2]])
        ) as mock_embed:
            response = client.post(
                "/v1/knowledge/batch",
                params={"user_id": "user-a"},
                json={"items": [{"content": "doc one"}, {"content": "doc two"}]},
            )

        assert response.status_code == 201
        assert response.json() == {"inserted": 2, "degraded": False}
        mock_embed.assert_awaited_once_with(["doc one", "doc two"])
        rows = mock_knowledge_db.add_fragments.call_args[0][2]
        assert [r["embedding"] for r in rows] == [[0.1], [0.2]]

    def test_batch_embedding_failure_is_degraded(self, client, mock_knowledge_db):
        mock_knowledge_db.add_fragments.return_value = 1
        with patch("app.api.knowledge.embed_texts_async", new=AsyncMock(side_effect=Exception("down"))):
            response = client.post(
                "/v1/knowledge/batch", params={"user_id": "user-a"}, json={"items": [{"content": "doc"}]}
            )

        assert response.json()["degraded"] is True
        assert mock_knowledge_db.add_fragments.call_args[0][2][0]["embedding"] is None


class TestReads:
    def test_list_knowledge(self, client, mock_supabase, mock_knowledge_db):
        mock_knowledge_db.list_fragments.return_value = [_fragment()]

        response = client.get("/v1/knowledge", params={"user_id": "user-a", "content_type": "user_fact"})

        assert response.status_code == 200
        assert response.json()[0]["content"] == "I drive a Tesla"
        mock_knowledge_db.list_fragments.assert_called_once_with(
            mock_supabase, "user-a", content_type="user_fact", limit=50
        )

    def test_stats(self, client, mock_knowledge_db):
        mock_knowledge_db.get_knowledge_stats.return_value = {"user_id": "user-a", "total": 3}

        response = client.get("/v1/knowledge/stats", params={"user_id": "user-a"})

        assert response.json()["total"] == 3

    def test_search_returns_scored_fragments(self, client):
        fake = FakeDB()
        fake.knowledge_store.add_fragment(None, "user-a", "I drive a Tesla", embedding=[1.0, 0.0])
        fake.knowledge_store.add_fragment(None, "user-b", "I drive a Volvo", embedding=[1.0, 0.0])

        with (
            patch("app.core.chat_pipeline.knowledge_db", fake.knowledge_store),
            patch("app.api.knowledge.embed_query", new=AsyncMock(return_value=QueryEmbedding(vector=[1.0, 0.0]))),
        ):
            response = client.post(
                "/v1/knowledge/search", params={"user_id": "user-a"}, json={"query": "which car?"}
            )

        assert response.status_code == 200
        data = response.json()
        assert [f["content"] for f in data["fragments"]] == ["I drive a Tesla"]
        assert data["has_relevant_context"] is True
        assert data["fragments"][0]["confidence_score"] == 0.9

    @pytest.mark.parametrize("top_k", [2, 15])
    def test_search_honours_top_k_beyond_chat_default(self, client, top_k):
        fake = FakeDB()
        for i in range(20):
            fake.knowledge_store.add_fragment(None, "user-a", f"Fact number {i}", embedding=[1.0, 0.0])

        with (
            patch("app.core.chat_pipeline.knowledge_db", fake.knowledge_store),
            patch("app.api.knowledge.embed_query", new=AsyncMock(return_value=QueryEmbedding(vector=[1.0, 0.0]))),
        ):
            response = client.post(
                "/v1/knowledge/search", params={"user_id": "user-a"}, json={"query": "facts", "top_k": top_k}
            )

        assert response.status_code == 200
        assert len(response.json()["fragments"]) == top_k


class TestDeletion:
    def test_delete_all_user_data(self, client, mock_knowledge_db):
        mock_knowledge_db.delete_user_knowledge.return_value = 4
        with (
            patch("app.core.semantic_cache.cache_db") as mock_cache_db,
            patch("app.api.knowledge.insights_db") as mock_insights_db,
        ):
            mock_cache_db.delete_user_cache.return_value = 2
            mock_insights_db.delete_profile.return_value = 1
            response = client.delete("/v1/knowledge", params={"user_id": "user-a"})

        assert response.status_code == 200
        assert response.json() == {
            "user_id": "user-a",
            "knowledge_deleted": 4,
            "cache_deleted": 2,
            "profile_deleted": True,
        }

    def test_delete_keeps_insight_audit_log(self, client, mock_knowledge_db):
        fake = FakeDB()
        profile = fake.insight_store.create_profile(None, "user-a", {"topic_interests": ["SEO"]})
        fake.insight_store.insert_update_log(
            None, str(profile.id), "user-a", {"topic_interests": ["SEO"]}, 0.8, "Mentioned SEO"
        )
        mock_knowledge_db.delete_user_knowledge.return_value = 0

        with (
            patch("app.core.semantic_cache.cache_db", fake.cache_store),
            patch("app.api.knowledge.insights_db", fake.insight_store),
        ):
            response = client.delete("/v1/knowledge", params={"user_id": "user-a"})

        assert response.json()["profile_deleted"] is True
        assert fake.profiles == {}
        assert [e.ai_reasoning for e in fake.insight_store.list_update_log(None, "user-a")] == ["Mentioned SEO"]

    def test_retention_sweep_defaults_to_setting(self, client, mock_supabase, mock_knowledge_db):
        mock_knowledge_db.delete_fragments_older_than.return_value = 5

        response = client.delete("/v1/knowledge/conversations", params={"user_id": "user-a"})

        assert response.json() == {"user_id": "user-a", "deleted": 5, "older_than_days": 90}
        mock_knowledge_db.delete_fragments_older_than.assert_called_once_with(mock_supabase, "user-a", 90)

    def test_retention_sweep_custom_window(self, client, mock_knowledge_db):
        mock_knowledge_db.delete_fragments_older_than.return_value = 0

        response = client.delete(
            "/v1/knowledge/conversations", params={"user_id": "user-a", "older_than_days": 7}
        )

        assert response.json()["older_than_days"] == 7
