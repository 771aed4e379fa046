"""Semantic response cache (semantic_cache table) operations."""

from datetime import UTC, datetime
from typing import Any

from supabase import Client

from app.core.logging import get_logger
from app.core.schemas_context import CachedResponse, CacheEntry

logger = get_logger(__name__)

TABLE = "semantic_cache"

# query_embedding comes back from PostgREST as a string; reads skip it
_COLUMNS = "id, user_id, query_hash, cached_response, hit_count, last_hit, created_at, expires_at"
_ENTRY_FIELDS = frozenset(c.strip() for c in _COLUMNS.split(","))


def get_cache_entry(
    supabase: Client,
    user_id: str,
    query_hash: str,
    now: datetime | None = None,
) -> CacheEntry | None:
    """
    Fetch the live cache row for (user_id, query_hash).

    Rows past ``expires_at`` are treated as absent even before the reaper
    deletes them.

    Returns:
        CacheEntry or None
    """
    now = now or datetime.now(UTC)

    try:
        response = (
            supabase.table(TABLE)
            .select(_COLUMNS)
            .eq("user_id", user_id)
            .eq("query_hash", query_hash)
            .gt("expires_at", now.isoformat())
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        return CacheEntry.model_validate(rows[0])

    except Exception as e:
        logger.error(f"Cache lookup failed for user {user_id}: {e}")
        raise


def match_cache_entries(
    supabase: Client,
    user_id: str,
    query_embedding: list[float],
    threshold: float = 0.95,
    limit: int = 5,
) -> list[tuple[CacheEntry, float]]:
    """
    Find live cache rows whose query embedding is close to ``query_embedding``.

    Calls the match_semantic_cache RPC, which only considers the user's own
    unexpired rows and orders them nearest first.

    Returns:
        (entry, similarity) pairs with similarity >= threshold, nearest first
    """
    try:
        response = supabase.rpc(
            "match_semantic_cache",
            {
                "p_user_id": user_id,
                "query_embedding": query_embedding,
                "similarity_threshold": threshold,
                "match_count": limit,
            },
        ).execute()

    except Exception as e:
        logger.error(f"Semantic cache match failed for user {user_id}: {e}")
        raise

    matches: list[tuple[CacheEntry, float]] = []
    for row in response.data or []:
        similarity = float(row.get("similarity") or 0.0)
        if row.get("user_id") != user_id or similarity < threshold:
            continue
        entry = CacheEntry.model_validate({k: v for k, v in row.items() if k in _ENTRY_FIELDS})
        matches.append((entry, similarity))
    return matches


def increment_hit(supabase: Client, user_id: str, query_hash: str) -> int | None:
    """
    Record a cache hit (hit_count + 1, last_hit = now).

    Returns:
        The new hit count, or None if the row vanished
    """
    try:
        response = supabase.rpc(
            "increment_cache_hit",
            {"p_user_id": user_id, "p_query_hash": query_hash},
        ).execute()
        return response.data if isinstance(response.data, int) else None

    except Exception as e:
        logger.error(f"Failed to record cache hit for user {user_id}: {e}")
        raise


def upsert_cache_entry(
    supabase: Client,
    user_id: str,
    query_hash: str,
    query_embedding: list[float] | None,
    response: CachedResponse,
    expires_at: datetime,
    now: datetime | None = None,
) -> CacheEntry:
    """
    Insert or refresh the cache row keyed by (user_id, query_hash).

    Upserting on the unique key means two concurrent misses for the same new
    query converge on a single row instead of duplicating it. A refreshed row
    starts over: created_at is now and the hit bookkeeping is cleared, so the
    per-user trim ranks it as fresh.

    Returns:
        The stored entry
    """
    row = {
        "user_id": user_id,
        "query_hash": query_hash,
        "query_embedding": query_embedding,
        "cached_response": response.model_dump(),
        "expires_at": expires_at.isoformat(),
        "created_at": (now or datetime.now(UTC)).isoformat(),
        "hit_count": 0,
        "last_hit": None,
    }

    try:
        result = (
            supabase.table(TABLE)
            .upsert(row, on_conflict="user_id,query_hash")
            .execute()
        )
        if not result.data:
            raise RuntimeError("Upsert returned no data")

        stored = dict(result.data[0])
        stored.pop("query_embedding", None)
        return CacheEntry.model_validate(stored)

    except Exception as e:
        logger.error(f"Failed to store cache entry for user {user_id}: {e}")
        raise


def trim_user_cache(supabase: Client, user_id: str, max_entries: int) -> list[str]:
    """
    Keep only the ``max_entries`` most recently used rows for a user.

    Returns:
        Query hashes of the evicted rows
    """
    try:
        result = supabase.rpc(
            "trim_user_cache",
            {"p_user_id": user_id, "max_entries": max_entries},
        ).execute()
        evicted = [row["query_hash"] for row in result.data or []]
        if evicted:
            logger.info(f"Evicted {len(evicted)} cache rows over the per-user cap", extra={"user_id": user_id})
        return evicted

    except Exception as e:
        logger.error(f"Failed to trim cache for user {user_id}: {e}")
        raise


def delete_user_cache(supabase: Client, user_id: str) -> int:
    """Delete every cache row for a user. Returns rows deleted."""
    try:
        result = supabase.table(TABLE).delete().eq("user_id", user_id).execute()
        deleted = len(result.data) if result.data else 0
        logger.info(f"Cleared {deleted} cache rows", extra={"user_id": user_id})
        return deleted

    except Exception as e:
        logger.error(f"Failed to clear cache for user {user_id}: {e}")
        raise


def cleanup_expired_cache(supabase: Client) -> int:
    """Physically delete expired rows for all users. Returns rows deleted."""
    try:
        result = supabase.rpc("cleanup_expired_cache", {}).execute()
        deleted = int(result.data or 0)
        logger.info(f"Reaped {deleted} expired cache rows")
        return deleted

    except Exception as e:
        logger.error(f"Expired cache cleanup failed: {e}")
        raise


def get_cache_stats(
    supabase: Client,
    user_id: str,
    now: datetime | None = None,
    sample_size: int = 1000,
) -> dict[str, Any]:
    """
    Summarize a user's live cache rows.

    Returns:
        Dict with live_entries, total_hits and avg_hit_count (over a sample)
    """
    now = now or datetime.now(UTC)

    try:
        response = (
            supabase.table(TABLE)
            .select("hit_count", count="exact")
            .eq("user_id", user_id)
            .gt("expires_at", now.isoformat())
            .limit(sample_size)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to read cache stats for user {user_id}: {e}")
        raise

    rows = response.data or []
    hits = [int(r.get("hit_count") or 0) for r in rows]
    return {
        "live_entries": response.count if response.count is not None else len(rows),
        "total_hits": sum(hits),
        "avg_hit_count": round(sum(hits) / len(hits), 3) if hits else 0.0,
    }
