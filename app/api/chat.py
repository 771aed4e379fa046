"""Chat assistant API endpoint."""

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from supabase import Client

from app.core.chat_pipeline import ChatPipeline
from app.core.insight_updater import process_user_context
from app.core.logging import get_logger
from app.core.rate_limiter import check_chat_rate_limit, get_chat_rate_limit_stats
from app.core.schemas_context import ChatTurn
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    """Request to chat with the AI assistant."""

    message: str = Field(..., min_length=1, max_length=8000)
    conversation_history: List[ChatTurn] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """Answer for one chat turn."""

    answer: str
    sources: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    cache_hit: bool = False
    context_count: int = 0
    degraded: bool = False


@router.post("/chat", response_model=ChatResponse)
async def chat_with_assistant(
    request: ChatRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> ChatResponse:
    """
    Chat with the AI assistant.

    This endpoint:
    1. Checks the per-user rate limit
    2. Answers from the semantic cache, or runs retrieval and generation
    3. Schedules the insight profile update after the response is sent

    Args:
        request: Chat request with message and history
        user_id: Caller's user id
        background_tasks: FastAPI background task queue

    Returns:
        ChatResponse
    """
    check_chat_rate_limit(user_id)

    if not request.message.strip():
        raise HTTPException(status_code=422, detail="message must not be empty")

    pipeline = ChatPipeline(supabase)

    try:
        result = await pipeline.run(user_id, request.message, request.conversation_history)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"user_id": user_id})
        raise HTTPException(status_code=500, detail="Failed to generate a response") from e

    background_tasks.add_task(
        process_user_context,
        supabase,
        user_id,
        request.message,
        result.answer,
        request.conversation_history,
    )

    return ChatResponse(
        answer=result.answer,
        sources=result.sources,
        confidence=result.confidence,
        cache_hit=result.cache_hit,
        context_count=result.context_count,
        degraded=result.degraded,
    )


@router.get("/chat/rate-limit")
async def chat_rate_limit_status(user_id: str = Query(..., min_length=1, description="User id")) -> dict:
    """Remaining chat tokens for a user."""
    return get_chat_rate_limit_stats(user_id)
