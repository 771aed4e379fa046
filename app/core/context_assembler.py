"""Prompt context assembly for the chat answer.

Pure string composition: retrieved fragments, the user's insight profile and a
bounded slice of conversation history become the system prompt and message
list for the answer LLM call. Nothing here touches the database or the network.
"""

from dataclasses import dataclass, field
from typing import Any

from app.core.config import get_settings
from app.core.retrieval_scorer import RetrievalResult
from app.core.schemas_context import AIInsightProfile, ChatTurn

BASE_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Keep responses concise. "
    "When the knowledge base context below answers the question, use it and "
    "do not contradict it. If it does not, answer from general knowledge and "
    "say that you have no stored information about it."
)

DEFAULT_SOURCE = "Knowledge Base"

# Metadata keys surfaced in the profile summary, in display order
PROFILE_METADATA_KEYS = (
    ("company:name", "Company"),
    ("company:size", "Company size"),
    ("team:role", "Role"),
    ("project:type", "Project"),
    ("tools:mentioned", "Tools"),
    ("goals:mentioned", "Goals"),
    ("timeline:urgency", "Urgency"),
)

MAX_FRAGMENT_CHARS = 1000


@dataclass
class AssembledContext:
    """Everything the answer call needs."""

    system_prompt: str
    messages: list[dict[str, str]] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    knowledge_block: str = ""
    profile_block: str = ""
    history_text: str = ""


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def select_history(
    history: list[ChatTurn],
    max_turns: int,
    max_chars: int,
) -> list[ChatTurn]:
    """
    Keep the most recent turns that fit both budgets.

    Walks backwards from the newest turn so the oldest turns are dropped
    first. A single turn longer than the remaining budget is truncated
    rather than dropped when it is the newest one.
    """
    if max_turns <= 0 or max_chars <= 0:
        return []

    selected: list[ChatTurn] = []
    used = 0
    for turn in reversed(history[-max_turns:]):
        line_len = len(turn.role) + 2 + len(turn.content)
        if used + line_len > max_chars:
            if not selected:
                room = max_chars - len(turn.role) - 2
                if room > 0:
                    selected.append(ChatTurn(role=turn.role, content=turn.content[:room]))
            break
        selected.append(turn)
        used += line_len + 1

    selected.reverse()
    return selected


def format_knowledge(retrieval: RetrievalResult) -> str:
    """Bullet list of retrieved fragment contents, best first."""
    if not retrieval.fragments:
        return ""
    lines = [f"- {_truncate(f.content.strip(), MAX_FRAGMENT_CHARS)}" for f in retrieval.fragments]
    return "RELEVANT KNOWLEDGE BASE CONTEXT:\n" + "\n".join(lines)


def _metadata_value(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value if v)
    return str(value) if value is not None else ""


def format_profile(profile: AIInsightProfile | None) -> str:
    """Short summary of what is known about the user."""
    if profile is None:
        return ""

    lines: list[str] = []
    if profile.personality_traits:
        lines.append(f"- Personality: {', '.join(profile.personality_traits)}")
    if profile.topic_interests:
        lines.append(f"- Interests: {', '.join(profile.topic_interests)}")
    if profile.pain_points:
        lines.append(f"- Pain points: {', '.join(profile.pain_points)}")
    if profile.conversation_tone:
        lines.append(f"- Preferred tone: {profile.conversation_tone}")

    for key, label in PROFILE_METADATA_KEYS:
        rendered = _metadata_value(profile.ai_metadata.get(key))
        if rendered:
            lines.append(f"- {label}: {rendered}")

    if not lines:
        return ""
    return "WHAT YOU KNOW ABOUT THIS USER:\n" + "\n".join(lines)


def collect_sources(retrieval: RetrievalResult) -> list[str]:
    """De-duplicated ``metadata.source`` values in retrieval order."""
    sources: list[str] = []
    for fragment in retrieval.fragments:
        source = fragment.metadata.get("source") or DEFAULT_SOURCE
        if source not in sources:
            sources.append(str(source))
    return sources


def assemble_context(
    message: str,
    history: list[ChatTurn],
    retrieval: RetrievalResult,
    profile: AIInsightProfile | None,
) -> AssembledContext:
    """
    Build the answer prompt.

    Args:
        message: Current user message
        history: Prior turns, oldest first
        retrieval: Scored fragments for the message
        profile: The user's insight profile, if any

    Returns:
        AssembledContext with the system prompt and OpenAI-style messages
    """
    settings = get_settings()

    knowledge_block = format_knowledge(retrieval)
    profile_block = format_profile(profile)
    turns = select_history(history, settings.HISTORY_MAX_TURNS, settings.HISTORY_MAX_CHARS)
    history_text = "\n".join(f"{t.role}: {t.content}" for t in turns)

    parts = [BASE_SYSTEM_PROMPT]
    if profile_block:
        parts.append(profile_block)
    if knowledge_block:
        parts.append(knowledge_block)
    elif retrieval.degraded:
        parts.append("Knowledge base search is degraded right now; stored context may be incomplete.")
    system_prompt = "\n\n".join(parts)

    messages = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": t.role, "content": t.content} for t in turns)
    messages.append({"role": "user", "content": message})

    return AssembledContext(
        system_prompt=system_prompt,
        messages=messages,
        sources=collect_sources(retrieval),
        knowledge_block=knowledge_block,
        profile_block=profile_block,
        history_text=history_text,
    )
