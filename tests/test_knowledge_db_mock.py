"""Tests for knowledge store operations with mocked Supabase."""

from datetime import UTC, datetime
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from app.db.knowledge import (
    add_fragment,
    add_fragments,
    delete_fragments_older_than,
    delete_user_knowledge,
    get_knowledge_stats,
    list_fragments,
    match_candidates,
    record_access,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def mock_supabase():
    """Fixture for a mocked Supabase client."""
    return MagicMock()


def _stored_row(user_id="user-a", content="I drive a Tesla", content_type="user_fact"):
    return {
        "id": str(uuid4()),
        "user_id": user_id,
        "content": content,
        "content_type": content_type,
        "topics": None,
        "sentiment": None,
        "importance": 1.0,
        "metadata": None,
        "created_at": NOW.isoformat(),
        "last_accessed": None,
        "access_count": 0,
    }


class TestAddFragment:
    def test_inserts_row_scoped_to_user(self, mock_supabase):
        mock_supabase.table.return_value.insert.return_value.execute.return_value = MagicMock(
            data=[_stored_row()]
        )

        fragment = add_fragment(
            mock_supabase, "user-a", "  I drive a Tesla ", content_type="user_fact", embedding=[0.1] * 3
        )

        mock_supabase.table.assert_called_with("user_knowledge_base")
        inserted = mock_supabase.table.return_value.insert.call_args[0][0]
        assert inserted["user_id"] == "user-a"
        assert inserted["content"] == "I drive a Tesla"
        assert inserted["embedding"] == [0.1] * 3
        assert fragment.topics == []
        assert fragment.metadata == {}

    def test_missing_user_is_rejected(self, mock_supabase):
        with pytest.raises(ValueError, match="user_id"):
            add_fragment(mock_supabase, "", "content")
        mock_supabase.table.assert_not_called()

    def test_empty_content_is_rejected(self, mock_supabase):
        with pytest.raises(ValueError, match="content"):
            add_fragment(mock_supabase, "user-a", "   ")

    def test_unknown_content_type_is_rejected(self, mock_supabase):
        with pytest.raises(ValueError, match="Invalid content_type"):
            add_fragment(mock_supabase, "user-a", "x", content_type="memo")

    def test_empty_insert_response_raises(self, mock_supabase):
        mock_supabase.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[])
        with pytest.raises(RuntimeError):
            add_fragment(mock_supabase, "user-a", "x")


class TestAddFragments:
    def test_batch_forces_user_and_skips_blank_rows(self, mock_supabase):
        mock_supabase.table.return_value.insert.return_value.execute.return_value = MagicMock(
            data=[{"id": "1"}, {"id": "2"}]
        )

        count = add_fragments(
            mock_supabase,
            "user-a",
            [
                {"content": "doc one", "user_id": "user-b"},
                {"content": "  "},
                {"content": "doc two", "content_type": "user_fact"},
            ],
        )

        assert count == 2
        rows = mock_supabase.table.return_value.insert.call_args[0][0]
        assert [r["content"] for r in rows] == ["doc one", "doc two"]
        assert all(r["user_id"] == "user-a" for r in rows)
        assert rows[0]["content_type"] == "document"

    def test_empty_batch_does_not_hit_database(self, mock_supabase):
        assert add_fragments(mock_supabase, "user-a", []) == 0
        mock_supabase.table.assert_not_called()


class TestMatchCandidates:
    def test_calls_rpc_with_user_filter(self, mock_supabase):
        mock_supabase.rpc.return_value.execute.return_value = MagicMock(data=[_stored_row()])

        rows = match_candidates(mock_supabase, "user-a", "tesla", [0.1] * 3, limit=5)

        assert len(rows) == 1
        name, params = mock_supabase.rpc.call_args[0]
        assert name == "match_user_knowledge"
        assert params["p_user_id"] == "user-a"
        assert params["p_query"] == "tesla"
        assert params["match_count"] == 5

    def test_rows_from_other_users_are_dropped(self, mock_supabase):
        mock_supabase.rpc.return_value.execute.return_value = MagicMock(
            data=[_stored_row(), _stored_row(user_id="user-b")]
        )

        rows = match_candidates(mock_supabase, "user-a", "tesla", None)

        assert [r["user_id"] for r in rows] == ["user-a"]

    def test_rpc_failure_propagates(self, mock_supabase):
        mock_supabase.rpc.return_value.execute.side_effect = Exception("timeout")
        with pytest.raises(Exception, match="timeout"):
            match_candidates(mock_supabase, "user-a", "tesla", None)


class TestRecordAccess:
    def test_no_ids_is_a_noop(self, mock_supabase):
        assert record_access(mock_supabase, "user-a", []) == 0
        mock_supabase.rpc.assert_not_called()

    def test_failure_is_swallowed(self, mock_supabase):
        mock_supabase.rpc.return_value.execute.side_effect = Exception("boom")
        assert record_access(mock_supabase, "user-a", ["id-1"]) == 0


class TestReads:
    def test_list_fragments_filters_by_type(self, mock_supabase):
        query = mock_supabase.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value
        query.eq.return_value.execute.return_value = MagicMock(data=[_stored_row()])

        fragments = list_fragments(mock_supabase, "user-a", content_type="user_fact", limit=10)

        assert len(fragments) == 1
        query.eq.assert_called_with("content_type", "user_fact")

    def test_stats_aggregate_sample(self, mock_supabase):
        count_query = mock_supabase.table.return_value.select.return_value.eq.return_value
        count_query.execute.return_value = MagicMock(count=12)
        count_query.gte.return_value.execute.return_value = MagicMock(count=3)
        count_query.order.return_value.limit.return_value.execute.return_value = MagicMock(
            data=[
                {"content_type": "user_fact", "topics": ["cars"], "importance": 1.0},
                {"content_type": "conversation", "topics": ["cars", "travel"], "importance": 0.5},
            ]
        )

        stats = get_knowledge_stats(mock_supabase, "user-a", now=NOW)

        assert stats["total"] == 12
        assert stats["recent"] == 3
        assert stats["by_type"] == {"user_fact": 1, "conversation": 1}
        assert stats["top_topics"][0] == "cars"
        assert stats["avg_importance"] == 0.75


class TestDeletes:
    def test_delete_user_knowledge_counts_rows(self, mock_supabase):
        mock_supabase.table.return_value.delete.return_value.eq.return_value.execute.return_value = MagicMock(
            data=[{"id": "1"}, {"id": "2"}]
        )
        assert delete_user_knowledge(mock_supabase, "user-a") == 2
        mock_supabase.table.return_value.delete.return_value.eq.assert_called_with("user_id", "user-a")

    def test_retention_sweep_uses_cutoff(self, mock_supabase):
        sweep = mock_supabase.table.return_value.delete.return_value.eq.return_value.lt.return_value
        sweep.eq.return_value.execute.return_value = MagicMock(data=[{"id": "1"}])

        deleted = delete_fragments_older_than(mock_supabase, "user-a", days=30, now=NOW)

        assert deleted == 1
        cutoff = mock_supabase.table.return_value.delete.return_value.eq.return_value.lt.call_args[0][1]
        assert cutoff == datetime(2026, 1, 30, 12, 0, tzinfo=UTC).isoformat()
        sweep.eq.assert_called_with("content_type", "conversation")

    def test_retention_sweep_rejects_zero_days(self, mock_supabase):
        with pytest.raises(ValueError):
            delete_fragments_older_than(mock_supabase, "user-a", days=0)
