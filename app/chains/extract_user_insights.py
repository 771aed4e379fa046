"""LLM chain that extracts new user insights from a conversation turn.

The model returns a JSON diff (only information not already in the profile).
The output is sanitized here: confidence is clamped to [0, 1], arrays are
type-checked and ai_metadata is validated against AIMetadata. Any failure
(API error, empty content, invalid JSON) yields ``should_update=False`` with
confidence 0, so callers never see an exception from this module.
"""

from typing import Any

from openai import OpenAI

from app.core.config import get_settings
from app.core.llm import get_openai_client, parse_llm_json_dict
from app.core.logging import get_logger
from app.core.schemas_context import (
    AIInsightProfile,
    AIMetadata,
    ChatTurn,
    InsightData,
    InsightExtraction,
)

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert user behavior analyst. Extract structured insights from "
    "conversation data. Respond only with valid JSON."
)

METADATA_SYSTEM_PROMPT = "Extract metadata from user messages. Respond only with valid JSON."

OUTPUT_SCHEMA = """{
  "should_update": true/false,
  "reasoning": "Brief reason",
  "confidence": 0.0-1.0,
  "insights": {
    "personality_traits": ["new trait only"],
    "behavior_patterns": {
      "communication_style": "formal|casual|technical|brief",
      "technical_depth": "basic|intermediate|advanced"
    },
    "conversation_tone": "professional|casual|technical|friendly",
    "topic_interests": ["new interest only"],
    "pain_points": ["new pain point only"],
    "ai_metadata": {
      "company:name": "if mentioned",
      "company:size": "startup|small|medium|enterprise",
      "project:type": "seo|content|linkbuilding|marketing",
      "tools:mentioned": ["tool1", "tool2"],
      "budget:level": "low|medium|high",
      "goals:mentioned": ["goal1"],
      "challenges:mentioned": ["challenge1"],
      "timeline:urgency": "low|medium|high"
    }
  }
}"""

METADATA_SCHEMA = """{
  "company:name": "if mentioned",
  "company:size": "startup|small|medium|enterprise",
  "project:type": "seo|content|linkbuilding|marketing",
  "tools:mentioned": ["tool1"],
  "budget:level": "low|medium|high",
  "team:role": "if mentioned",
  "goals:mentioned": ["goal1"],
  "challenges:mentioned": ["challenge1"],
  "timeline:urgency": "low|medium|high"
}"""


def format_history(history: list[ChatTurn], max_turns: int, max_chars: int) -> str:
    """Flatten the last ``max_turns`` turns into ``role: content`` lines, capped at ``max_chars``."""
    recent = history[-max_turns:] if max_turns > 0 else []
    return "\n".join(f"{turn.role}: {turn.content}" for turn in recent)[:max_chars]


def build_analysis_prompt(
    message: str,
    response: str,
    history: list[ChatTurn],
    profile: AIInsightProfile | None,
) -> str:
    """Build the user prompt asking for NEW information only."""
    settings = get_settings()
    conversation_text = format_history(history, settings.HISTORY_MAX_TURNS, settings.HISTORY_MAX_CHARS)

    personality = ", ".join(profile.personality_traits) if profile else ""
    interests = ", ".join(profile.topic_interests) if profile else ""
    pain_points = ", ".join(profile.pain_points) if profile else ""
    metadata_keys = len(profile.ai_metadata) if profile else 0

    return f"""
Analyze this conversation for NEW user information. Be concise and focused.

CURRENT CONTEXT:
- Personality: {personality or 'None'}
- Interests: {interests or 'None'}
- Pain Points: {pain_points or 'None'}
- Metadata: {metadata_keys} keys

CONVERSATION:
Message: {message}
Response: {response}
History: {conversation_text[:1000]}

EXTRACT ONLY NEW INFORMATION:
{OUTPUT_SCHEMA}

RULES:
- Only NEW information not in current context
- Be very conservative with should_update
- Focus on clear, obvious information
- Skip if just greetings or small talk
"""


def _clamp(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return 0.0


def sanitize_extraction(result: dict[str, Any]) -> InsightExtraction:
    """Turn the model's raw JSON into a validated InsightExtraction."""
    raw_insights = result.get("insights")
    if not isinstance(raw_insights, dict):
        raw_insights = {}

    confidence = _clamp(result.get("confidence", 0))
    insights = InsightData.model_validate(
        {
            **{k: v for k, v in raw_insights.items() if k in InsightData.model_fields},
            # Missing confidence means "unknown", not "none"
            "confidence_score": confidence or 0.5,
        }
    )

    reasoning = result.get("reasoning")
    return InsightExtraction(
        should_update=result.get("should_update") is True,
        insights=insights,
        reasoning=reasoning if isinstance(reasoning, str) and reasoning else "No reasoning provided",
        confidence=confidence,
    )


def extract_user_insights(
    message: str,
    response: str,
    history: list[ChatTurn],
    profile: AIInsightProfile | None,
    client: OpenAI | None = None,
) -> InsightExtraction:
    """
    Ask the LLM for insights the profile does not have yet.

    Args:
        message: Latest user message
        response: Assistant answer to that message
        history: Prior conversation turns
        profile: Current profile (None if never analysed)
        client: OpenAI client override

    Returns:
        InsightExtraction; ``should_update=False, confidence=0`` on any failure
    """
    settings = get_settings()

    try:
        client = client or get_openai_client()
        completion = client.chat.completions.create(
            model=settings.INSIGHTS_MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_analysis_prompt(message, response, history, profile)},
            ],
            temperature=0.1,
            max_tokens=settings.INSIGHTS_MAX_TOKENS,
            response_format={"type": "json_object"},
        )
        content = completion.choices[0].message.content if completion.choices else None
    except Exception as e:
        logger.error(f"Insight extraction call failed: {e}")
        return InsightExtraction.no_update("Error in context extraction")

    if not content:
        return InsightExtraction.no_update("No analysis content received")

    try:
        extraction = sanitize_extraction(parse_llm_json_dict(content))
    except Exception as e:
        logger.warning(f"Insight extraction returned unusable JSON: {e}")
        logger.debug(f"Raw insight output: {content[:500]}")
        return InsightExtraction.no_update("Error in context extraction")

    logger.debug(
        f"Insight extraction: should_update={extraction.should_update}, "
        f"confidence={extraction.confidence:.2f}"
    )
    return extraction


def extract_message_metadata(message: str, client: OpenAI | None = None) -> dict[str, Any]:
    """
    Extract explicitly mentioned metadata from a single message.

    Returns:
        Validated ``namespace:field`` dict with empty values removed; {} on failure
    """
    settings = get_settings()
    prompt = f'Extract metadata from: "{message}"\n\nJSON only:\n{METADATA_SCHEMA}\n\nOnly explicit mentions.\n'

    try:
        client = client or get_openai_client()
        completion = client.chat.completions.create(
            model=settings.INSIGHTS_MODEL,
            messages=[
                {"role": "system", "content": METADATA_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.1,
            max_tokens=settings.METADATA_MAX_TOKENS,
            response_format={"type": "json_object"},
        )
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            return {}
        return AIMetadata.model_validate(parse_llm_json_dict(content)).to_storage()

    except Exception as e:
        logger.error(f"Metadata extraction failed: {e}")
        return {}
