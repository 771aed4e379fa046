"""Tests for tiered retrieval scoring."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from app.core.retrieval_scorer import (
    RetrievalResult,
    confidence_for,
    cosine_similarity,
    is_exact_match,
    priority_for,
    score_candidates,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _row(content, similarity=None, user_id="user-a", content_type="conversation", age=timedelta(days=30), **extra):
    row = {
        "id": str(uuid4()),
        "user_id": user_id,
        "content": content,
        "content_type": content_type,
        "topics": [],
        "importance": 1.0,
        "metadata": {},
        "created_at": (NOW - age).isoformat(),
        "access_count": 0,
        **extra,
    }
    if similarity is not None:
        row["similarity"] = similarity
    return row


class TestConfidenceTiers:
    @pytest.mark.parametrize(
        "similarity,expected",
        [(0.41, 0.9), (0.40, 0.8), (0.31, 0.8), (0.30, 0.7), (0.26, 0.7), (0.25, 0.0), (0.1, 0.0)],
    )
    def test_similarity_tiers(self, similarity, expected):
        assert confidence_for(similarity, exact_match=False) == expected

    def test_exact_match_wins(self):
        assert confidence_for(0.0, exact_match=True) == 0.95
        assert confidence_for(0.9, exact_match=True) == 0.95

    def test_exact_match_is_case_insensitive_substring(self):
        assert is_exact_match("Tesla Model 3", "I drive a tesla model 3 to work")
        assert not is_exact_match("Tesla Model S", "I drive a tesla model 3")

    def test_blank_query_never_matches(self):
        assert not is_exact_match("   ", "anything")


class TestPriority:
    def test_exact_match_priority(self):
        assert priority_for(True, "conversation", NOW - timedelta(days=300), NOW) == 3.0

    def test_recent_user_fact(self):
        assert priority_for(False, "user_fact", NOW - timedelta(days=3), NOW) == 2.5

    def test_last_day(self):
        assert priority_for(False, "conversation", NOW - timedelta(hours=2), NOW) == 1.5

    def test_last_week(self):
        assert priority_for(False, "document", NOW - timedelta(days=5), NOW) == 1.0

    def test_old_user_fact_falls_to_baseline(self):
        assert priority_for(False, "user_fact", NOW - timedelta(days=30), NOW) == 0.5

    def test_naive_timestamps_are_treated_as_utc(self):
        naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
        assert priority_for(False, "conversation", naive, NOW) == 1.5


class TestScoreCandidates:
    def test_excludes_low_similarity(self):
        result = score_candidates("cars", [_row("about boats", similarity=0.1)], now=NOW)
        assert result.fragments == []
        assert result.candidate_count == 1

    def test_ordering_priority_then_similarity_then_recency(self):
        rows = [
            _row("old but similar", similarity=0.9, age=timedelta(days=60)),
            _row("recent fact", similarity=0.3, content_type="user_fact", age=timedelta(days=1)),
            _row("I drive a Tesla", similarity=0.26, age=timedelta(days=90)),
            _row("old and less similar", similarity=0.5, age=timedelta(days=60)),
        ]

        result = score_candidates("drive a tesla", rows, now=NOW)

        assert [f.content for f in result.fragments] == [
            "I drive a Tesla",
            "recent fact",
            "old but similar",
            "old and less similar",
        ]
        assert result.fragments[0].exact_match is True
        assert result.fragments[0].confidence_score == 0.95

    def test_equal_priority_and_similarity_orders_newest_first(self):
        older = _row("first", similarity=0.5, age=timedelta(days=40))
        newer = _row("second", similarity=0.5, age=timedelta(days=20))

        result = score_candidates("q", [older, newer], now=NOW)

        assert [f.content for f in result.fragments] == ["second", "first"]

    def test_top_k_limits_output(self):
        rows = [_row(f"row {i}", similarity=0.5) for i in range(10)]
        result = score_candidates("q", rows, top_k=3, now=NOW)
        assert len(result.fragments) == 3

    def test_drops_rows_owned_by_other_users(self):
        rows = [_row("mine", similarity=0.9), _row("theirs", similarity=0.9, user_id="user-b")]

        result = score_candidates("q", rows, user_id="user-a", now=NOW)

        assert [f.content for f in result.fragments] == ["mine"]
        assert all(f.user_id == "user-a" for f in result.fragments)

    def test_degraded_mode_is_lexical_only_and_capped(self):
        rows = [
            _row("I drive a Tesla", similarity=0.9),
            _row("unrelated but similar vector", similarity=0.9),
        ]

        result = score_candidates("drive a tesla", rows, degraded=True, now=NOW)

        assert [f.content for f in result.fragments] == ["I drive a Tesla"]
        assert result.fragments[0].confidence_score == 0.5
        assert result.degraded is True
        assert result.has_relevant_context is False

    def test_similarity_computed_from_embeddings_when_missing(self):
        rows = [
            _row("close", embedding=[1.0, 0.0, 0.0]),
            _row("orthogonal", embedding=[0.0, 1.0, 0.0]),
            _row("stringified", embedding="[0.9, 0.1, 0.0]"),
        ]

        result = score_candidates("q", rows, query_embedding=[1.0, 0.0, 0.0], now=NOW)

        contents = [f.content for f in result.fragments]
        assert contents == ["close", "stringified"]
        assert result.fragments[0].similarity == pytest.approx(1.0)
        assert result.fragments[0].embedding is None

    def test_has_relevant_context_threshold(self):
        assert score_candidates("q", [_row("a", similarity=0.31)], now=NOW).has_relevant_context
        # 0.7 exactly is not "relevant"
        assert not score_candidates("q", [_row("a", similarity=0.26)], now=NOW).has_relevant_context


class TestRetrievalResult:
    def test_empty_result_aggregates(self):
        result = RetrievalResult()
        assert result.avg_similarity == 0.0
        assert result.avg_confidence == 0.0
        assert result.top_confidence == 0.0
        assert result.has_relevant_context is False


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([], []) == 0.0
