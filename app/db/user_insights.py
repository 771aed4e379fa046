"""AI insight profile (user_ai_insights) and audit log (ai_insight_updates) operations."""

from datetime import UTC, datetime
from typing import Any

from supabase import Client

from app.core.logging import get_logger
from app.core.schemas_context import AIInsightProfile, InsightUpdateLogEntry

logger = get_logger(__name__)

PROFILE_TABLE = "user_ai_insights"
LOG_TABLE = "ai_insight_updates"

PROFILE_FIELDS = (
    "personality_traits",
    "behavior_patterns",
    "learning_style",
    "expertise_level",
    "conversation_tone",
    "communication_patterns",
    "topic_interests",
    "pain_points",
    "ai_metadata",
    "confidence_score",
    "last_analysis_at",
)


def _profile_row(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(PROFILE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
    row = dict(fields)
    if row.get("last_analysis_at") is not None and not isinstance(row["last_analysis_at"], str):
        row["last_analysis_at"] = row["last_analysis_at"].isoformat()
    return row


def get_profile(supabase: Client, user_id: str) -> AIInsightProfile | None:
    """
    Get the insight profile for a user.

    Returns:
        AIInsightProfile or None if the user has never been analysed
    """
    try:
        response = (
            supabase.table(PROFILE_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return AIInsightProfile.model_validate(rows[0]) if rows else None

    except Exception as e:
        logger.error(f"Failed to load insight profile for user {user_id}: {e}")
        raise


def create_profile(supabase: Client, user_id: str, fields: dict[str, Any]) -> AIInsightProfile:
    """
    Create the (single) profile row for a user.

    Raises:
        ValueError: On unknown fields
    """
    row = {"user_id": user_id, **_profile_row(fields)}

    try:
        response = supabase.table(PROFILE_TABLE).insert(row).execute()
        if not response.data:
            raise RuntimeError("Insert returned no data")

        logger.info("Created insight profile", extra={"user_id": user_id})
        return AIInsightProfile.model_validate(response.data[0])

    except Exception as e:
        logger.error(f"Failed to create insight profile for user {user_id}: {e}")
        raise


def update_profile(supabase: Client, user_id: str, fields: dict[str, Any]) -> AIInsightProfile:
    """
    Overwrite profile fields for a user.

    Raises:
        ValueError: If the profile does not exist or fields are unknown
    """
    row = {**_profile_row(fields), "updated_at": datetime.now(UTC).isoformat()}

    try:
        response = (
            supabase.table(PROFILE_TABLE)
            .update(row)
            .eq("user_id", user_id)
            .execute()
        )
        if not response.data:
            raise ValueError(f"Insight profile not found for user: {user_id}")

        return AIInsightProfile.model_validate(response.data[0])

    except Exception as e:
        logger.error(f"Failed to update insight profile for user {user_id}: {e}")
        raise


def insert_update_log(
    supabase: Client,
    insights_id: str,
    user_id: str,
    new_value: dict[str, Any],
    ai_confidence: float,
    ai_reasoning: str,
    update_type: str = "GENERAL",
    source: str = "chat_interaction",
    old_value: dict[str, Any] | None = None,
) -> InsightUpdateLogEntry:
    """
    Append an audit row describing one profile mutation.

    ``old_value`` holds the prior values of the fields the mutation touched;
    it is None when the mutation created the profile.

    Returns:
        The inserted log entry
    """
    row = {
        "insights_id": str(insights_id),
        "user_id": user_id,
        "update_type": update_type,
        "new_value": new_value,
        "old_value": old_value,
        "ai_confidence": ai_confidence,
        "ai_reasoning": ai_reasoning,
        "source": source,
    }

    try:
        response = supabase.table(LOG_TABLE).insert(row).execute()
        if not response.data:
            raise RuntimeError("Insert returned no data")
        return InsightUpdateLogEntry.model_validate(response.data[0])

    except Exception as e:
        logger.error(f"Failed to write insight audit row for user {user_id}: {e}")
        raise


def list_update_log(supabase: Client, user_id: str, limit: int = 50) -> list[InsightUpdateLogEntry]:
    """List a user's insight audit rows, newest first."""
    try:
        response = (
            supabase.table(LOG_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [InsightUpdateLogEntry.model_validate(r) for r in response.data or []]

    except Exception as e:
        logger.error(f"Failed to list insight audit rows for user {user_id}: {e}")
        raise


def delete_profile(supabase: Client, user_id: str) -> int:
    """Delete a user's profile. Audit rows are kept. Returns profile rows deleted."""
    try:
        response = supabase.table(PROFILE_TABLE).delete().eq("user_id", user_id).execute()
        return len(response.data) if response.data else 0

    except Exception as e:
        logger.error(f"Failed to delete insight profile for user {user_id}: {e}")
        raise
