"""AI insight profile API endpoints."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from supabase import Client

from app.core.insight_updater import apply_message_metadata, process_user_context
from app.core.logging import get_logger
from app.core.schemas_context import AIInsightProfile, ChatTurn, InsightExtraction, InsightUpdateLogEntry
from app.db import user_insights as insights_db
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

router = APIRouter()


class AnalyzeRequest(BaseModel):
    """A conversation turn to analyse on demand."""

    message: str = Field(..., min_length=1)
    response: str = ""
    conversation_history: List[ChatTurn] = Field(default_factory=list)
    force: bool = Field(default=True, description="Bypass the message gate and re-analysis interval")


class MetadataRequest(BaseModel):
    """A single message to mine for explicitly stated metadata."""

    message: str = Field(..., min_length=1)


class MetadataResponse(BaseModel):
    user_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


@router.get("/insights/{user_id}", response_model=AIInsightProfile)
async def get_insight_profile(
    user_id: str,
    supabase: Client = Depends(get_supabase),
) -> AIInsightProfile:
    """
    Get a user's AI insight profile.

    Raises:
        HTTPException: 404 if the user has never been analysed
    """
    try:
        profile = insights_db.get_profile(supabase, user_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to load insight profile") from e

    if profile is None:
        raise HTTPException(status_code=404, detail="Insight profile not found")
    return profile


@router.get("/insights/{user_id}/updates", response_model=List[InsightUpdateLogEntry])
async def list_insight_updates(
    user_id: str,
    limit: int = Query(50, ge=1, le=500, description="Maximum number of audit rows"),
    supabase: Client = Depends(get_supabase),
) -> List[InsightUpdateLogEntry]:
    """Audit trail of profile changes, newest first."""
    try:
        return insights_db.list_update_log(supabase, user_id, limit=limit)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to list insight updates") from e


@router.post("/insights/{user_id}/analyze", response_model=InsightExtraction)
def analyze_conversation(
    user_id: str,
    request: AnalyzeRequest,
    supabase: Client = Depends(get_supabase),
) -> InsightExtraction:
    """
    Run an insight analysis pass now instead of waiting for the chat hook.

    Extraction failures come back as ``should_update=false`` rather than an
    error status.
    """
    return process_user_context(
        supabase,
        user_id,
        request.message,
        request.response,
        request.conversation_history,
        force=request.force,
    )


@router.post("/insights/{user_id}/metadata", response_model=MetadataResponse)
def extract_metadata(
    user_id: str,
    request: MetadataRequest,
    supabase: Client = Depends(get_supabase),
) -> MetadataResponse:
    """
    Extract metadata stated in one message and merge it into the profile.

    Returns the extracted fields; an empty mapping when nothing was found.

    Raises:
        HTTPException: 500 if the profile could not be written
    """
    try:
        metadata = apply_message_metadata(supabase, user_id, request.message)
    except Exception as e:
        logger.error(f"Metadata merge failed for {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to store metadata") from e

    return MetadataResponse(user_id=user_id, metadata=metadata)
