"""Knowledge store API endpoints (ingestion, listing, search, deletion)."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from supabase import Client

from app.core.chat_pipeline import ChatPipeline
from app.core.config import get_settings
from app.core.embeddings import embed_query, embed_texts_async
from app.core.logging import get_logger
from app.core.schemas_context import ContentType, KnowledgeFragment, KnowledgeInput, ScoredFragment
from app.core.semantic_cache import SemanticCache
from app.db import knowledge as knowledge_db
from app.db import user_insights as insights_db
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

router = APIRouter()


class KnowledgeCreated(BaseModel):
    fragment: KnowledgeFragment
    degraded: bool = False


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=8000)
    top_k: int | None = Field(default=None, ge=1, le=50)


class SearchResponse(BaseModel):
    fragments: List[ScoredFragment] = Field(default_factory=list)
    candidate_count: int = 0
    has_relevant_context: bool = False
    degraded: bool = False


@router.post("/knowledge", response_model=KnowledgeCreated, status_code=201)
async def add_knowledge(
    payload: KnowledgeInput,
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> KnowledgeCreated:
    """
    Ingest a document or fact for a user.

    When the embedding provider is down the fragment is still stored without
    a vector (lexically searchable only) and ``degraded`` is set.
    """
    embedding = await embed_query(payload.content, user_id=user_id)

    try:
        fragment = knowledge_db.add_fragment(
            supabase,
            user_id,
            payload.content,
            content_type=payload.content_type,
            embedding=embedding.vector,
            topics=payload.topics,
            sentiment=payload.sentiment,
            importance=payload.importance,
            metadata=payload.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Failed to ingest knowledge: {e}", extra={"user_id": user_id})
        raise HTTPException(status_code=500, detail="Failed to store knowledge") from e

    return KnowledgeCreated(fragment=fragment, degraded=embedding.degraded)


@router.get("/knowledge", response_model=List[KnowledgeFragment])
async def list_knowledge(
    user_id: str = Query(..., min_length=1, description="User id"),
    content_type: ContentType | None = Query(None, description="Filter by content type"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of fragments"),
    supabase: Client = Depends(get_supabase),
) -> List[KnowledgeFragment]:
    """List a user's fragments, newest first."""
    try:
        return knowledge_db.list_fragments(supabase, user_id, content_type=content_type, limit=limit)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to list knowledge") from e


@router.get("/knowledge/stats")
async def knowledge_stats(
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> Dict[str, Any]:
    """Counts, content types and top topics of a user's knowledge."""
    try:
        return knowledge_db.get_knowledge_stats(supabase, user_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to load knowledge stats") from e


@router.post("/knowledge/search", response_model=SearchResponse)
async def search_knowledge(
    request: SearchRequest,
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> SearchResponse:
    """Scored retrieval for a query without answer generation or caching."""
    pipeline = ChatPipeline(supabase)
    embedding = await embed_query(request.query, user_id=user_id)
    retrieval = pipeline.retrieve(user_id, request.query, embedding, top_k=request.top_k)

    return SearchResponse(
        fragments=retrieval.fragments,
        candidate_count=retrieval.candidate_count,
        has_relevant_context=retrieval.has_relevant_context,
        degraded=retrieval.degraded,
    )


@router.delete("/knowledge")
async def delete_knowledge(
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> Dict[str, Any]:
    """Delete everything stored for a user: knowledge, cached answers and profile."""
    try:
        knowledge_deleted = knowledge_db.delete_user_knowledge(supabase, user_id)
        cache_deleted = SemanticCache(supabase).clear_user(user_id)
        profiles_deleted = insights_db.delete_profile(supabase, user_id)
    except Exception as e:
        logger.error(f"Failed to delete user data: {e}", extra={"user_id": user_id})
        raise HTTPException(status_code=500, detail="Failed to delete user data") from e

    return {
        "user_id": user_id,
        "knowledge_deleted": knowledge_deleted,
        "cache_deleted": cache_deleted,
        "profile_deleted": profiles_deleted > 0,
    }


class KnowledgeBatch(BaseModel):
    items: List[KnowledgeInput] = Field(..., min_length=1, max_length=100)


@router.post("/knowledge/batch", status_code=201)
async def add_knowledge_batch(
    payload: KnowledgeBatch,
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> Dict[str, Any]:
    """
    Ingest several documents in one embedding call.

    If the embedding call fails the whole batch is stored without vectors.
    """
    texts = [item.content for item in payload.items]
    try:
        vectors: List[List[float] | None] = list(await embed_texts_async(texts))
        degraded = False
    except Exception as e:
        logger.warning(f"Batch embedding failed, storing without vectors: {e}", extra={"user_id": user_id})
        vectors = [None] * len(texts)
        degraded = True

    rows = [
        {**item.model_dump(), "embedding": vector}
        for item, vector in zip(payload.items, vectors)
    ]

    try:
        inserted = knowledge_db.add_fragments(supabase, user_id, rows)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Failed to ingest knowledge batch: {e}", extra={"user_id": user_id})
        raise HTTPException(status_code=500, detail="Failed to store knowledge") from e

    return {"inserted": inserted, "degraded": degraded}


@router.delete("/knowledge/conversations")
async def sweep_conversations(
    user_id: str = Query(..., min_length=1, description="User id"),
    older_than_days: int | None = Query(None, ge=1, description="Defaults to KNOWLEDGE_RETENTION_DAYS"),
    supabase: Client = Depends(get_supabase),
) -> Dict[str, Any]:
    """Retention sweep of a user's old conversation fragments."""
    days = older_than_days or get_settings().KNOWLEDGE_RETENTION_DAYS
    try:
        deleted = knowledge_db.delete_fragments_older_than(supabase, user_id, days)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Retention sweep failed") from e
    return {"user_id": user_id, "deleted": deleted, "older_than_days": days}
