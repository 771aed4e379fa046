"""Semantic cache administration endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from supabase import Client

from app.core.logging import get_logger
from app.core.semantic_cache import SemanticCache
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

router = APIRouter()


@router.get("/cache/stats")
async def cache_stats(
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> Dict[str, Any]:
    """Live entries and hit counts for a user's cache."""
    try:
        return SemanticCache(supabase).stats(user_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to load cache stats") from e


@router.delete("/cache")
async def clear_cache(
    user_id: str = Query(..., min_length=1, description="User id"),
    supabase: Client = Depends(get_supabase),
) -> Dict[str, Any]:
    """Drop every cached answer for a user."""
    try:
        deleted = SemanticCache(supabase).clear_user(user_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to clear cache") from e
    return {"user_id": user_id, "deleted": deleted}


@router.post("/cache/cleanup")
async def cleanup_cache(supabase: Client = Depends(get_supabase)) -> Dict[str, Any]:
    """Physically delete expired cache rows for all users."""
    try:
        deleted = SemanticCache(supabase).cleanup_expired()
    except Exception as e:
        logger.error(f"Cache cleanup failed: {e}")
        raise HTTPException(status_code=500, detail="Cache cleanup failed") from e
    return {"deleted": deleted}
