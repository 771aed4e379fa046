"""Heuristically gated AI insight profile updates.

Flow for one conversation turn:

    should_analyze(message, profile)      -> cheap gate, no network
    extract_user_insights(...)            -> LLM JSON diff (never raises)
    apply_insight_update(...)             -> merge into profile + audit row

``process_user_context`` runs the whole flow and never raises, so it is safe
to schedule as a background task after the chat response has been sent.
"""

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from openai import OpenAI
from supabase import Client

from app.chains.extract_user_insights import extract_message_metadata, extract_user_insights
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import timer
from app.core.schemas_context import (
    AIInsightProfile,
    ChatTurn,
    InsightData,
    InsightExtraction,
)
from app.db import user_insights as insights_db

logger = get_logger(__name__)

MIN_MESSAGE_LENGTH = 10
GREETING_MAX_LENGTH = 50
LONG_MESSAGE_LENGTH = 100
EXPLICIT_METADATA_CONFIDENCE = 0.9

GREETINGS = ("hi", "hello", "hey", "thanks", "thank you", "ok", "okay", "yes", "no")

INFO_KEYWORDS = (
    "work at", "company", "project", "budget", "team", "role", "experience",
    "challenge", "problem", "goal", "need", "want", "looking for",
    "tool", "software", "platform", "service", "solution",
)

# Whole-word match so "no" does not fire on "know" and "hi" not on "this"
_GREETING_RE = re.compile(r"\b(" + "|".join(re.escape(g) for g in GREETINGS) + r")\b")


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def should_analyze(
    message: str,
    profile: AIInsightProfile | None,
    now: datetime | None = None,
    interval_minutes: int | None = None,
) -> bool:
    """
    Cheap gate deciding whether a message is worth an LLM analysis.

    Skips messages under 10 chars, short greetings, and users analysed within
    the re-analysis interval. Otherwise analyses when an information keyword
    appears or the message is longer than 100 chars.
    """
    text = (message or "").strip()
    if len(text) < MIN_MESSAGE_LENGTH:
        return False

    lowered = text.lower()
    if len(text) < GREETING_MAX_LENGTH and _GREETING_RE.search(lowered):
        return False

    if profile is not None and profile.last_analysis_at is not None:
        now = _as_utc(now or datetime.now(UTC))
        if interval_minutes is None:
            interval_minutes = get_settings().REANALYSIS_INTERVAL_MINUTES
        if now - _as_utc(profile.last_analysis_at) < timedelta(minutes=interval_minutes):
            return False

    if any(keyword in lowered for keyword in INFO_KEYWORDS):
        return True
    return len(text) > LONG_MESSAGE_LENGTH


def merge_arrays(existing: list[str], new_items: list[str]) -> list[str]:
    """Ordered union without duplicates or empty strings."""
    merged: list[str] = []
    seen: set[str] = set()
    for item in [*existing, *new_items]:
        if not item or item in seen:
            continue
        seen.add(item)
        merged.append(item)
    return merged


def merge_insights(existing: AIInsightProfile | None, new: InsightData) -> dict[str, Any]:
    """
    Merge extracted insights into the current profile.

    Arrays are unioned, maps shallow-merged (new keys win) and scalars
    replaced only when the new value is set.

    Returns:
        Profile field dict ready for create_profile/update_profile
    """
    base = existing or AIInsightProfile(user_id="")
    new_metadata = new.ai_metadata.to_storage()

    return {
        "personality_traits": merge_arrays(base.personality_traits, new.personality_traits),
        "behavior_patterns": {**base.behavior_patterns, **new.behavior_patterns},
        "learning_style": new.learning_style or base.learning_style,
        "expertise_level": {**base.expertise_level, **new.expertise_level},
        "conversation_tone": new.conversation_tone or base.conversation_tone,
        "communication_patterns": {**base.communication_patterns, **new.communication_patterns},
        "topic_interests": merge_arrays(base.topic_interests, new.topic_interests),
        "pain_points": merge_arrays(base.pain_points, new.pain_points),
        "ai_metadata": {**base.ai_metadata, **new_metadata},
        "confidence_score": new.confidence_score or base.confidence_score,
    }


def prior_values(existing: AIInsightProfile, fields: dict[str, Any]) -> dict[str, Any]:
    """Values ``existing`` held for the fields an update is about to change."""
    changed = {
        name
        for name, value in fields.items()
        if name != "last_analysis_at" and getattr(existing, name) != value
    }
    return existing.model_dump(mode="json", include=changed)


def apply_insight_update(
    supabase: Client,
    user_id: str,
    extraction: InsightExtraction,
    existing: AIInsightProfile | None = None,
    now: datetime | None = None,
    source: str = "chat_interaction",
) -> AIInsightProfile:
    """
    Write an extraction into the user's profile and append an audit row.

    The profile is created on first analysis. Callers that already loaded the
    profile pass it as ``existing`` to skip a read.

    Raises:
        Exception: Database errors propagate
    """
    now = now or datetime.now(UTC)
    if existing is None:
        existing = insights_db.get_profile(supabase, user_id)

    fields = merge_insights(existing, extraction.insights)
    fields["last_analysis_at"] = now

    if existing is None:
        profile = insights_db.create_profile(supabase, user_id, fields)
        reasoning = extraction.reasoning or "Initial conversation analysis"
        old_value = None
    else:
        old_value = prior_values(existing, fields)
        profile = insights_db.update_profile(supabase, user_id, fields)
        reasoning = extraction.reasoning or "Real-time conversation analysis"

    insights_db.insert_update_log(
        supabase,
        insights_id=str(profile.id),
        user_id=user_id,
        new_value=extraction.insights.model_dump(mode="json", by_alias=True),
        ai_confidence=extraction.confidence,
        ai_reasoning=reasoning,
        source=source,
        old_value=old_value,
    )

    logger.info(
        f"Updated insight profile (confidence={extraction.confidence:.2f})",
        extra={"user_id": user_id},
    )
    return profile


def process_user_context(
    supabase: Client,
    user_id: str,
    message: str,
    response: str,
    history: list[ChatTurn],
    force: bool = False,
    now: datetime | None = None,
    client: OpenAI | None = None,
) -> InsightExtraction:
    """
    Analyse one conversation turn and update the profile when warranted.

    Args:
        supabase: Database handle
        user_id: Owner of the conversation
        message: User message
        response: Assistant answer
        history: Prior turns
        force: Skip the cheap gate (manual analysis)
        now: Clock override for tests
        client: OpenAI client override

    Returns:
        The extraction result; never raises
    """
    now = now or datetime.now(UTC)

    try:
        profile = insights_db.get_profile(supabase, user_id)

        if not force and not should_analyze(message, profile, now=now):
            return InsightExtraction.no_update(
                "Message does not contain significant new information", confidence=0.1
            )

        with timer("Insight extraction", user_id, log_level="debug"):
            extraction = extract_user_insights(message, response, history, profile, client=client)

        if extraction.should_update:
            source = "manual_analysis" if force else "chat_interaction"
            apply_insight_update(supabase, user_id, extraction, existing=profile, now=now, source=source)

        return extraction

    except Exception as e:
        logger.error(f"Error processing user context: {e}", extra={"user_id": user_id})
        return InsightExtraction.no_update("Error processing context")


def apply_message_metadata(
    supabase: Client,
    user_id: str,
    message: str,
    client: OpenAI | None = None,
) -> dict[str, Any]:
    """
    Merge metadata stated explicitly in one message into the profile.

    Cheaper than a full analysis and not subject to the re-analysis interval,
    so ``last_analysis_at`` is left alone. Writes an audit row when anything
    was found.

    Returns:
        The extracted ``namespace:field`` metadata; {} when nothing was found

    Raises:
        Exception: Database errors propagate
    """
    metadata = extract_message_metadata(message, client=client)
    if not metadata:
        return {}

    existing = insights_db.get_profile(supabase, user_id)
    if existing is None:
        profile = insights_db.create_profile(supabase, user_id, {"ai_metadata": metadata})
        old_value = None
    else:
        fields = {"ai_metadata": {**existing.ai_metadata, **metadata}}
        old_value = prior_values(existing, fields)
        profile = insights_db.update_profile(supabase, user_id, fields)

    insights_db.insert_update_log(
        supabase,
        insights_id=str(profile.id),
        user_id=user_id,
        new_value={"ai_metadata": metadata},
        ai_confidence=EXPLICIT_METADATA_CONFIDENCE,
        ai_reasoning="Metadata stated explicitly in a message",
        update_type="METADATA",
        source="metadata_extraction",
        old_value=old_value,
    )

    logger.info(f"Merged {len(metadata)} metadata fields", extra={"user_id": user_id})
    return metadata
