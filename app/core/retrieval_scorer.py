"""Tiered scoring of knowledge-store candidates.

Confidence comes from an exact match or the first similarity tier cleared:

    exact (case-insensitive) substring match   -> 0.95
    cosine similarity > 0.40                    -> 0.90
    cosine similarity > 0.30                    -> 0.80
    cosine similarity > 0.25                    -> 0.70
    otherwise                                   -> 0.0 (excluded)

Ordering is (priority desc, similarity desc, created_at desc), where priority
boosts exact matches (3.0), user_fact rows from the last 7 days (2.5), rows
from the last 24h (1.5), rows from the last 7 days (1.0), baseline 0.5.

Usage:
    rows = match_candidates(sb, user_id, query, embedding.vector)
    result = score_candidates(query, rows, degraded=embedding.degraded)
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import numpy as np

from app.core.logging import get_logger
from app.core.schemas_context import ScoredFragment

logger = get_logger(__name__)

EXACT_MATCH_CONFIDENCE = 0.95
SIMILARITY_TIERS: tuple[tuple[float, float], ...] = (
    (0.40, 0.90),
    (0.30, 0.80),
    (0.25, 0.70),
)
RELEVANT_CONFIDENCE = 0.7
DEGRADED_CONFIDENCE_CAP = 0.5

PRIORITY_EXACT = 3.0
PRIORITY_RECENT_FACT = 2.5
PRIORITY_LAST_DAY = 1.5
PRIORITY_LAST_WEEK = 1.0
PRIORITY_BASELINE = 0.5


@dataclass
class RetrievalResult:
    """Scored, ordered fragments for one query."""

    fragments: list[ScoredFragment] = field(default_factory=list)
    candidate_count: int = 0
    degraded: bool = False

    @property
    def has_relevant_context(self) -> bool:
        return any(f.confidence_score > RELEVANT_CONFIDENCE for f in self.fragments)

    @property
    def avg_similarity(self) -> float:
        if not self.fragments:
            return 0.0
        return sum(f.similarity for f in self.fragments) / len(self.fragments)

    @property
    def avg_confidence(self) -> float:
        if not self.fragments:
            return 0.0
        return sum(f.confidence_score for f in self.fragments) / len(self.fragments)

    @property
    def top_confidence(self) -> float:
        return max((f.confidence_score for f in self.fragments), default=0.0)


def is_exact_match(query_text: str, content: str) -> bool:
    """Case-insensitive substring test of the whole query against the content."""
    needle = query_text.strip().lower()
    return bool(needle) and needle in (content or "").lower()


def confidence_for(similarity: float, exact_match: bool) -> float:
    """Map the match signals onto the confidence tiers."""
    if exact_match:
        return EXACT_MATCH_CONFIDENCE
    for threshold, confidence in SIMILARITY_TIERS:
        if similarity > threshold:
            return confidence
    return 0.0


def cosine_similarity(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either is empty or zero."""
    va = np.asarray(a, dtype=float).ravel()
    vb = np.asarray(b, dtype=float).ravel()
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def _row_similarity(row: dict[str, Any], query_embedding: list[float] | None) -> float:
    if row.get("similarity") is not None:
        return float(row["similarity"])
    # Rows read straight from the table carry the vector instead of a score
    embedding = row.get("embedding")
    if query_embedding is None or embedding is None:
        return 0.0
    if isinstance(embedding, str):
        embedding = json.loads(embedding)
    return cosine_similarity(query_embedding, embedding)


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def priority_for(
    exact_match: bool,
    content_type: str,
    created_at: datetime,
    now: datetime,
) -> float:
    """Recency/type priority used as the primary sort key."""
    age = now - _as_utc(created_at)

    if exact_match:
        return PRIORITY_EXACT
    if content_type == "user_fact" and age <= timedelta(days=7):
        return PRIORITY_RECENT_FACT
    if age <= timedelta(hours=24):
        return PRIORITY_LAST_DAY
    if age <= timedelta(days=7):
        return PRIORITY_LAST_WEEK
    return PRIORITY_BASELINE


def score_candidates(
    query_text: str,
    candidates: list[dict[str, Any]],
    user_id: str | None = None,
    top_k: int = 6,
    degraded: bool = False,
    now: datetime | None = None,
    query_embedding: list[float] | None = None,
) -> RetrievalResult:
    """
    Score and order candidate rows.

    Args:
        query_text: Raw user query
        candidates: Rows from match_user_knowledge (``similarity`` optional)
        user_id: When given, rows owned by anyone else are dropped
        top_k: Maximum fragments to return
        degraded: True when the query could not be embedded; only lexical
            matches survive and every confidence is capped at 0.5
        now: Clock override for tests
        query_embedding: Used to score rows that carry an embedding but no
            precomputed similarity

    Returns:
        RetrievalResult with at most top_k fragments
    """
    now = _as_utc(now or datetime.now(UTC))
    scored: list[ScoredFragment] = []

    for row in candidates:
        if user_id is not None and row.get("user_id") != user_id:
            logger.warning(
                f"Dropping candidate {row.get('id')} owned by another user",
                extra={"user_id": user_id},
            )
            continue

        exact = is_exact_match(query_text, row.get("content", ""))
        similarity = 0.0 if degraded else _row_similarity(row, query_embedding)
        confidence = confidence_for(similarity, exact)
        if confidence <= 0.0:
            continue
        if degraded:
            confidence = min(confidence, DEGRADED_CONFIDENCE_CAP)

        fields = {k: v for k, v in row.items() if k != "embedding"}
        fragment = ScoredFragment.model_validate(
            {**fields, "similarity": similarity, "exact_match": exact, "confidence_score": confidence}
        )
        fragment.priority_score = priority_for(exact, fragment.content_type, fragment.created_at, now)
        scored.append(fragment)

    scored.sort(
        key=lambda f: (f.priority_score, f.similarity, _as_utc(f.created_at).timestamp()),
        reverse=True,
    )

    result = RetrievalResult(
        fragments=scored[:top_k],
        candidate_count=len(candidates),
        degraded=degraded,
    )
    logger.debug(
        f"Scored {len(candidates)} candidates -> {len(result.fragments)} fragments "
        f"(relevant={result.has_relevant_context}, degraded={degraded})",
        extra={"user_id": user_id} if user_id else None,
    )
    return result
