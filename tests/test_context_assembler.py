"""Tests for chat prompt assembly."""

from datetime import UTC, datetime
from uuid import uuid4

from app.core.context_assembler import (
    BASE_SYSTEM_PROMPT,
    DEFAULT_SOURCE,
    assemble_context,
    collect_sources,
    format_knowledge,
    format_profile,
    select_history,
)
from app.core.retrieval_scorer import RetrievalResult
from app.core.schemas_context import AIInsightProfile, ChatTurn, ScoredFragment

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _fragment(content, source=None, confidence=0.9):
    return ScoredFragment(
        id=uuid4(),
        user_id="user-a",
        content=content,
        metadata={"source": source} if source else {},
        created_at=NOW,
        similarity=0.5,
        confidence_score=confidence,
    )


def _turns(n):
    return [ChatTurn(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}") for i in range(n)]


class TestSelectHistory:
    def test_keeps_most_recent_turns(self):
        selected = select_history(_turns(10), max_turns=3, max_chars=10_000)
        assert [t.content for t in selected] == ["turn 7", "turn 8", "turn 9"]

    def test_character_budget_drops_oldest_first(self):
        turns = [ChatTurn(role="user", content="a" * 40), ChatTurn(role="user", content="b" * 40)]
        selected = select_history(turns, max_turns=10, max_chars=60)
        assert [t.content for t in selected] == ["b" * 40]

    def test_oversized_newest_turn_is_truncated(self):
        turns = [ChatTurn(role="user", content="x" * 500)]
        selected = select_history(turns, max_turns=10, max_chars=100)

        assert len(selected) == 1
        assert len(selected[0].content) == 100 - len("user") - 2

    def test_zero_budget_yields_nothing(self):
        assert select_history(_turns(4), max_turns=0, max_chars=100) == []
        assert select_history(_turns(4), max_turns=4, max_chars=0) == []


class TestFormatting:
    def test_knowledge_block_lists_fragments_in_order(self):
        retrieval = RetrievalResult(fragments=[_fragment("I drive a Tesla"), _fragment("I live in Austin")])

        block = format_knowledge(retrieval)

        assert block.startswith("RELEVANT KNOWLEDGE BASE CONTEXT:")
        assert block.index("I drive a Tesla") < block.index("I live in Austin")

    def test_empty_retrieval_has_no_block(self):
        assert format_knowledge(RetrievalResult()) == ""

    def test_long_fragment_is_truncated(self):
        block = format_knowledge(RetrievalResult(fragments=[_fragment("y" * 5000)]))
        assert "..." in block
        assert len(block) < 1100

    def test_profile_block_includes_traits_and_metadata(self):
        profile = AIInsightProfile(
            user_id="user-a",
            personality_traits=["analytical"],
            topic_interests=["SEO"],
            conversation_tone="casual",
            ai_metadata={"company:name": "Acme", "tools:mentioned": ["Ahrefs", "Notion"]},
        )

        block = format_profile(profile)

        assert block.startswith("WHAT YOU KNOW ABOUT THIS USER:")
        assert "analytical" in block
        assert "Preferred tone: casual" in block
        assert "Company: Acme" in block
        assert "Tools: Ahrefs, Notion" in block

    def test_empty_profile_has_no_block(self):
        assert format_profile(None) == ""
        assert format_profile(AIInsightProfile(user_id="user-a")) == ""

    def test_sources_are_deduplicated_with_default(self):
        retrieval = RetrievalResult(
            fragments=[_fragment("a", source="handbook"), _fragment("b"), _fragment("c", source="handbook")]
        )
        assert collect_sources(retrieval) == ["handbook", DEFAULT_SOURCE]


class TestAssembleContext:
    def test_message_order(self):
        history = [ChatTurn(role="user", content="hi"), ChatTurn(role="assistant", content="hello")]
        retrieval = RetrievalResult(fragments=[_fragment("I drive a Tesla")])

        context = assemble_context("what car do I drive?", history, retrieval, None)

        roles = [m["role"] for m in context.messages]
        assert roles == ["system", "user", "assistant", "user"]
        assert context.messages[-1]["content"] == "what car do I drive?"
        assert context.system_prompt.startswith(BASE_SYSTEM_PROMPT)
        assert "I drive a Tesla" in context.system_prompt
        assert context.sources == [DEFAULT_SOURCE]

    def test_no_knowledge_means_no_knowledge_block(self):
        context = assemble_context("hello", [], RetrievalResult(), None)

        assert "RELEVANT KNOWLEDGE BASE CONTEXT" not in context.system_prompt
        assert context.sources == []
        assert len(context.messages) == 2

    def test_degraded_retrieval_is_noted(self):
        context = assemble_context("hello", [], RetrievalResult(degraded=True), None)
        assert "degraded" in context.system_prompt

    def test_profile_precedes_knowledge(self):
        profile = AIInsightProfile(user_id="user-a", topic_interests=["EVs"])
        retrieval = RetrievalResult(fragments=[_fragment("I drive a Tesla")])

        context = assemble_context("q", [], retrieval, profile)

        prompt = context.system_prompt
        assert prompt.index("WHAT YOU KNOW ABOUT THIS USER") < prompt.index("RELEVANT KNOWLEDGE BASE CONTEXT")
