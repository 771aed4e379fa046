"""Pydantic schemas for the per-user knowledge, cache and insight tables."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

ContentType = Literal["user_fact", "conversation", "document"]
CONTENT_TYPES: tuple[str, ...] = ("user_fact", "conversation", "document")


# =======================
# Knowledge store
# =======================


class KnowledgeFragment(BaseModel):
    """A single row of user_knowledge_base."""

    id: UUID
    user_id: str
    content: str
    content_type: ContentType = "conversation"
    embedding: list[float] | None = Field(default=None, description="Omitted on most reads")
    topics: list[str] = Field(default_factory=list)
    sentiment: str | None = None
    importance: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    last_accessed: datetime | None = None
    access_count: int = 0

    @field_validator("topics", mode="before")
    @classmethod
    def _null_topics(cls, v: Any) -> Any:
        return v or []

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, v: Any) -> Any:
        return v or {}


class ScoredFragment(KnowledgeFragment):
    """A knowledge fragment with retrieval scores attached."""

    similarity: float = 0.0
    exact_match: bool = False
    priority_score: float = 0.5
    confidence_score: float = 0.0


class KnowledgeInput(BaseModel):
    """Payload for ingesting a fact or document."""

    content: str = Field(..., min_length=1, max_length=20_000)
    content_type: ContentType = "document"
    topics: list[str] = Field(default_factory=list)
    sentiment: str | None = None
    importance: float = Field(default=1.0, ge=0.0, le=10.0)
    metadata: dict[str, Any] = Field(default_factory=dict)


# =======================
# Semantic cache
# =======================


class CachedResponse(BaseModel):
    """Answer payload stored in semantic_cache.cached_response."""

    answer: str
    sources: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class CacheEntry(BaseModel):
    """A row of semantic_cache."""

    id: UUID | None = None
    user_id: str
    query_hash: str = Field(..., min_length=64, max_length=64)
    query_embedding: list[float] | None = None
    cached_response: CachedResponse
    hit_count: int = 0
    last_hit: datetime | None = None
    created_at: datetime | None = None
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """True once expires_at has passed."""
        return self.expires_at <= now


# =======================
# AI insight profile
# =======================


_COMPANY_SIZES = {"startup", "small", "medium", "enterprise"}
_LEVELS = {"low", "medium", "high"}


def _coerce_choice(value: Any, allowed: set[str]) -> str | None:
    """Lower-case a categorical value; anything outside ``allowed`` becomes None."""
    if not isinstance(value, str):
        return None
    cleaned = value.strip().lower()
    return cleaned if cleaned in allowed else None


def _coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, str | int | float) and str(v).strip()]


class AIMetadata(BaseModel):
    """Structured metadata about a user, validated at the ingestion boundary.

    Keys use the ``namespace:field`` aliases stored in the ai_metadata JSONB
    column. Unknown keys are dropped, malformed values are nulled.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    company_name: str | None = Field(default=None, alias="company:name")
    company_size: str | None = Field(default=None, alias="company:size")
    project_type: str | None = Field(default=None, alias="project:type")
    tools_mentioned: list[str] = Field(default_factory=list, alias="tools:mentioned")
    budget_level: str | None = Field(default=None, alias="budget:level")
    team_role: str | None = Field(default=None, alias="team:role")
    goals_mentioned: list[str] = Field(default_factory=list, alias="goals:mentioned")
    challenges_mentioned: list[str] = Field(default_factory=list, alias="challenges:mentioned")
    timeline_urgency: str | None = Field(default=None, alias="timeline:urgency")

    @field_validator("company_name", "project_type", "team_role", mode="before")
    @classmethod
    def _plain_text(cls, v: Any) -> str | None:
        if not isinstance(v, str):
            return None
        v = v.strip()
        # Prompt placeholders echoed back by the model are not information
        if not v or v.lower() in {"if mentioned", "unknown", "none", "n/a"}:
            return None
        return v

    @field_validator("company_size", mode="before")
    @classmethod
    def _company_size(cls, v: Any) -> str | None:
        return _coerce_choice(v, _COMPANY_SIZES)

    @field_validator("budget_level", "timeline_urgency", mode="before")
    @classmethod
    def _level(cls, v: Any) -> str | None:
        return _coerce_choice(v, _LEVELS)

    @field_validator("tools_mentioned", "goals_mentioned", "challenges_mentioned", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _coerce_str_list(v)

    def to_storage(self) -> dict[str, Any]:
        """Dump with aliased keys, omitting empty values."""
        dumped = self.model_dump(by_alias=True, exclude_none=True)
        return {k: v for k, v in dumped.items() if v not in ([], "")}


class InsightData(BaseModel):
    """Insights extracted from one conversation turn."""

    personality_traits: list[str] = Field(default_factory=list)
    behavior_patterns: dict[str, Any] = Field(default_factory=dict)
    learning_style: str | None = None
    expertise_level: dict[str, str] = Field(default_factory=dict)
    conversation_tone: str | None = None
    communication_patterns: dict[str, Any] = Field(default_factory=dict)
    topic_interests: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    ai_metadata: AIMetadata = Field(default_factory=AIMetadata)
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("personality_traits", "topic_interests", "pain_points", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        # Non-list values are discarded rather than rejected
        return _coerce_str_list(v) if isinstance(v, list) else []

    @field_validator("behavior_patterns", "communication_patterns", "expertise_level", mode="before")
    @classmethod
    def _maps(cls, v: Any) -> dict:
        return v if isinstance(v, dict) else {}

    @field_validator("ai_metadata", mode="before")
    @classmethod
    def _metadata(cls, v: Any) -> Any:
        return v if isinstance(v, dict | AIMetadata) else {}


class InsightExtraction(BaseModel):
    """Result of analysing a conversation turn."""

    should_update: bool = False
    insights: InsightData = Field(default_factory=InsightData)
    reasoning: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def no_update(cls, reasoning: str, confidence: float = 0.0) -> "InsightExtraction":
        return cls(should_update=False, reasoning=reasoning, confidence=confidence)


class AIInsightProfile(BaseModel):
    """A row of user_ai_insights (one per user)."""

    id: UUID | None = None
    user_id: str
    personality_traits: list[str] = Field(default_factory=list)
    behavior_patterns: dict[str, Any] = Field(default_factory=dict)
    learning_style: str | None = None
    expertise_level: dict[str, Any] = Field(default_factory=dict)
    conversation_tone: str | None = None
    communication_patterns: dict[str, Any] = Field(default_factory=dict)
    topic_interests: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    ai_metadata: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float = 0.0
    last_analysis_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator(
        "personality_traits", "topic_interests", "pain_points", mode="before"
    )
    @classmethod
    def _null_lists(cls, v: Any) -> Any:
        return v or []

    @field_validator(
        "behavior_patterns", "expertise_level", "communication_patterns", "ai_metadata",
        mode="before",
    )
    @classmethod
    def _null_maps(cls, v: Any) -> Any:
        return v or {}


class InsightUpdateLogEntry(BaseModel):
    """A row of ai_insight_updates. Written once, never modified."""

    id: UUID | None = None
    insights_id: UUID
    user_id: str
    update_type: str = "GENERAL"
    new_value: dict[str, Any] = Field(default_factory=dict)
    old_value: dict[str, Any] | None = None
    ai_confidence: float = 0.0
    ai_reasoning: str = ""
    source: str = "chat_interaction"
    created_at: datetime | None = None


# =======================
# Chat
# =======================


class ChatTurn(BaseModel):
    """A single message of conversation history."""

    role: Literal["user", "assistant", "system"]
    content: str
