"""Per-user knowledge store (user_knowledge_base) operations.

Rows are append-only: a superseding fact is a new row, never an update.
The only mutation allowed after insert is access bookkeeping
(``last_accessed``, ``access_count``) through the touch_user_knowledge RPC.

Every function takes the Supabase handle and a user id explicitly; there is
no query path that is not filtered by ``user_id``.
"""

from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any

from supabase import Client

from app.core.logging import get_logger
from app.core.schemas_context import CONTENT_TYPES, KnowledgeFragment

logger = get_logger(__name__)

TABLE = "user_knowledge_base"

# Embeddings are large; reads skip them unless explicitly needed
_COLUMNS = (
    "id, user_id, content, content_type, topics, sentiment, importance, "
    "metadata, created_at, last_accessed, access_count"
)


def _require_user(user_id: str) -> str:
    if not user_id or not str(user_id).strip():
        raise ValueError("user_id is required for knowledge store access")
    return str(user_id)


def add_fragment(
    supabase: Client,
    user_id: str,
    content: str,
    content_type: str = "conversation",
    embedding: list[float] | None = None,
    topics: list[str] | None = None,
    sentiment: str | None = None,
    importance: float = 1.0,
    metadata: dict[str, Any] | None = None,
) -> KnowledgeFragment:
    """
    Append a fragment to a user's knowledge store.

    Args:
        supabase: Supabase client
        user_id: Owner of the fragment
        content: Fragment text
        content_type: user_fact, conversation or document
        embedding: Vector for the content (None when the provider was down)
        topics: Topic labels
        sentiment: Optional sentiment label
        importance: Importance weight
        metadata: Free-form JSON metadata (source, etc.)

    Returns:
        The inserted fragment

    Raises:
        ValueError: If user_id/content are empty or content_type is unknown
    """
    user_id = _require_user(user_id)
    if not content or not content.strip():
        raise ValueError("content must not be empty")
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"Invalid content_type: {content_type}. Must be one of {CONTENT_TYPES}")

    row = {
        "user_id": user_id,
        "content": content.strip(),
        "content_type": content_type,
        "embedding": embedding,
        "topics": topics or [],
        "sentiment": sentiment,
        "importance": importance,
        "metadata": metadata or {},
    }

    try:
        response = supabase.table(TABLE).insert(row).execute()
        if not response.data:
            raise RuntimeError("Insert returned no data")

        fragment = KnowledgeFragment.model_validate(response.data[0])
        logger.info(
            f"Stored {content_type} fragment {fragment.id}",
            extra={"user_id": user_id, "has_embedding": embedding is not None},
        )
        return fragment

    except Exception as e:
        logger.error(f"Failed to store knowledge fragment for user {user_id}: {e}")
        raise


def add_fragments(supabase: Client, user_id: str, fragments: list[dict[str, Any]]) -> int:
    """
    Append a batch of fragments for one user.

    Each dict carries the keyword arguments of ``add_fragment`` (minus the
    user id, which is forced to ``user_id`` for every row).

    Returns:
        Number of rows inserted
    """
    user_id = _require_user(user_id)
    if not fragments:
        return 0

    rows = []
    for fragment in fragments:
        content_type = fragment.get("content_type", "document")
        if content_type not in CONTENT_TYPES:
            raise ValueError(f"Invalid content_type: {content_type}")
        content = (fragment.get("content") or "").strip()
        if not content:
            continue
        rows.append(
            {
                "user_id": user_id,
                "content": content,
                "content_type": content_type,
                "embedding": fragment.get("embedding"),
                "topics": fragment.get("topics") or [],
                "sentiment": fragment.get("sentiment"),
                "importance": fragment.get("importance", 1.0),
                "metadata": fragment.get("metadata") or {},
            }
        )

    if not rows:
        return 0

    try:
        response = supabase.table(TABLE).insert(rows).execute()
        inserted = len(response.data) if response.data else 0
        logger.info(f"Stored {inserted} fragments", extra={"user_id": user_id})
        return inserted

    except Exception as e:
        logger.error(f"Failed to store knowledge batch for user {user_id}: {e}")
        raise


def match_candidates(
    supabase: Client,
    user_id: str,
    query_text: str,
    query_embedding: list[float] | None,
    limit: int = 24,
    min_similarity: float = 0.25,
) -> list[dict[str, Any]]:
    """
    Fetch candidate fragments for scoring via the match_user_knowledge RPC.

    A row qualifies when it contains the query text (case-insensitive) or its
    cosine similarity to ``query_embedding`` exceeds ``min_similarity``. With
    no embedding only lexical matches come back.

    Returns:
        Raw rows with ``similarity`` and ``exact_match`` columns
    """
    user_id = _require_user(user_id)

    try:
        response = supabase.rpc(
            "match_user_knowledge",
            {
                "p_user_id": user_id,
                "p_query": query_text,
                "query_embedding": query_embedding,
                "match_count": limit,
                "min_similarity": min_similarity,
            },
        ).execute()

        rows = response.data or []
        # The RPC filters by user already; keep the guard at the boundary too
        foreign = [r for r in rows if r.get("user_id") != user_id]
        if foreign:
            logger.error(
                f"match_user_knowledge returned {len(foreign)} rows owned by other users",
                extra={"user_id": user_id},
            )
            rows = [r for r in rows if r.get("user_id") == user_id]
        return rows

    except Exception as e:
        logger.error(f"Knowledge candidate search failed for user {user_id}: {e}")
        raise


def record_access(supabase: Client, user_id: str, fragment_ids: list[str]) -> int:
    """Bump last_accessed/access_count for retrieved fragments.

    Bookkeeping only: logs errors but never raises.
    """
    if not fragment_ids:
        return 0

    try:
        response = supabase.rpc(
            "touch_user_knowledge",
            {"p_user_id": _require_user(user_id), "fragment_ids": [str(i) for i in fragment_ids]},
        ).execute()
        return int(response.data or 0)

    except Exception as e:
        logger.warning(f"Access bookkeeping failed for user {user_id}: {e}")
        return 0


def list_fragments(
    supabase: Client,
    user_id: str,
    content_type: str | None = None,
    limit: int = 50,
) -> list[KnowledgeFragment]:
    """
    List a user's fragments, newest first.

    Args:
        supabase: Supabase client
        user_id: Owner
        content_type: Optional content type filter
        limit: Maximum number of rows

    Returns:
        List of fragments ordered by created_at desc
    """
    user_id = _require_user(user_id)

    try:
        query = (
            supabase.table(TABLE)
            .select(_COLUMNS)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
        )
        if content_type:
            query = query.eq("content_type", content_type)

        response = query.execute()
        return [KnowledgeFragment.model_validate(row) for row in response.data or []]

    except Exception as e:
        logger.error(f"Failed to list knowledge for user {user_id}: {e}")
        raise


def count_fragments(
    supabase: Client,
    user_id: str,
    content_type: str | None = None,
    since: datetime | None = None,
) -> int:
    """Count a user's fragments, optionally by type and creation time."""
    user_id = _require_user(user_id)

    try:
        query = supabase.table(TABLE).select("id", count="exact").eq("user_id", user_id)
        if content_type:
            query = query.eq("content_type", content_type)
        if since:
            query = query.gte("created_at", since.isoformat())

        response = query.execute()
        return response.count or 0

    except Exception as e:
        logger.error(f"Failed to count knowledge for user {user_id}: {e}")
        raise


def get_knowledge_stats(
    supabase: Client,
    user_id: str,
    now: datetime | None = None,
    sample_size: int = 500,
) -> dict[str, Any]:
    """
    Summarize a user's knowledge store.

    Topic counts and average importance are computed over the most recent
    ``sample_size`` fragments.

    Returns:
        Dict with total, recent (7 days), by_type, top_topics, avg_importance
    """
    user_id = _require_user(user_id)
    now = now or datetime.now(UTC)

    total = count_fragments(supabase, user_id)
    recent = count_fragments(supabase, user_id, since=now - timedelta(days=7))

    try:
        response = (
            supabase.table(TABLE)
            .select("content_type, topics, importance")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(sample_size)
            .execute()
        )
        rows = response.data or []
    except Exception as e:
        logger.error(f"Failed to sample knowledge for user {user_id}: {e}")
        raise

    topic_counts: Counter[str] = Counter()
    type_counts: Counter[str] = Counter()
    for row in rows:
        type_counts[row.get("content_type") or "conversation"] += 1
        topic_counts.update(t for t in row.get("topics") or [] if t)

    importances = [float(r["importance"]) for r in rows if r.get("importance") is not None]

    return {
        "user_id": user_id,
        "total": total,
        "recent": recent,
        "by_type": dict(type_counts),
        "top_topics": [topic for topic, _ in topic_counts.most_common(5)],
        "avg_importance": round(sum(importances) / len(importances), 3) if importances else 0.0,
    }


def delete_user_knowledge(supabase: Client, user_id: str) -> int:
    """
    Delete every fragment a user owns (data deletion request).

    Returns:
        Number of rows deleted
    """
    user_id = _require_user(user_id)

    try:
        response = supabase.table(TABLE).delete().eq("user_id", user_id).execute()
        deleted = len(response.data) if response.data else 0
        logger.info(f"Deleted {deleted} knowledge fragments", extra={"user_id": user_id})
        return deleted

    except Exception as e:
        logger.error(f"Failed to delete knowledge for user {user_id}: {e}")
        raise


def delete_fragments_older_than(
    supabase: Client,
    user_id: str,
    days: int,
    content_type: str | None = "conversation",
    now: datetime | None = None,
) -> int:
    """
    Retention sweep: drop a user's fragments older than ``days``.

    Only conversation fragments are swept by default; facts and documents
    stay until deleted explicitly.

    Returns:
        Number of rows deleted
    """
    user_id = _require_user(user_id)
    if days < 1:
        raise ValueError("days must be >= 1")

    cutoff = (now or datetime.now(UTC)) - timedelta(days=days)

    try:
        query = supabase.table(TABLE).delete().eq("user_id", user_id).lt("created_at", cutoff.isoformat())
        if content_type:
            query = query.eq("content_type", content_type)

        response = query.execute()
        deleted = len(response.data) if response.data else 0
        logger.info(
            f"Retention sweep removed {deleted} fragments older than {days} days",
            extra={"user_id": user_id},
        )
        return deleted

    except Exception as e:
        logger.error(f"Retention sweep failed for user {user_id}: {e}")
        raise
