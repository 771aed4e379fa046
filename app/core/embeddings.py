"""OpenAI embeddings generation with validation."""

import asyncio
import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache

from openai import OpenAI

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class QueryEmbedding:
    """Embedding for a single query, or the reason there is none.

    When the provider fails, ``vector`` is None and ``degraded`` is True.
    Callers fall back to lexical-only retrieval and must not cache the answer.
    """

    vector: list[float] | None
    degraded: bool = False
    error: str | None = None


class QueryEmbeddingCache:
    """
    In-process LRU of query embeddings with a short TTL.

    Repeated and retried queries reuse the vector instead of paying for another
    provider call. Only successful embeddings are stored.
    """

    def __init__(self, max_entries: int = 1000, ttl_seconds: float = 300.0, clock=time.monotonic):
        if max_entries < 1 or ttl_seconds <= 0:
            raise ValueError("max_entries and ttl_seconds must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (vector, stored_at)
        self._entries: OrderedDict[str, tuple[list[float], float]] = OrderedDict()

    @staticmethod
    def _key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def get(self, text: str) -> list[float] | None:
        key = self._key(text)
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            vector, stored_at = cached
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return vector

    def put(self, text: str, vector: list[float]) -> None:
        key = self._key(text)
        with self._lock:
            self._entries[key] = (vector, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@lru_cache(maxsize=1)
def get_query_embedding_cache() -> QueryEmbeddingCache:
    """Process-wide query embedding cache sized from settings."""
    settings = get_settings()
    return QueryEmbeddingCache(
        max_entries=settings.EMBEDDING_CACHE_MAX_ENTRIES,
        ttl_seconds=settings.EMBEDDING_CACHE_TTL_SECONDS,
    )


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Generate embeddings for a list of texts using OpenAI.

    Args:
        texts: List of text strings to embed

    Returns:
        List of embedding vectors (each vector is list of floats)

    Raises:
        ValueError: If embedding dimension doesn't match expected EMBEDDING_DIM
        Exception: If OpenAI API call fails
    """
    if not texts:
        return []

    settings = get_settings()
    client = _get_client()

    try:
        response = client.embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=texts,
        )

        embeddings = []
        for i, embedding_obj in enumerate(response.data):
            embedding = embedding_obj.embedding

            # Validate dimension
            if len(embedding) != settings.EMBEDDING_DIM:
                raise ValueError(
                    f"Embedding dimension mismatch for text {i}: "
                    f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
                )

            embeddings.append(embedding)

        logger.info(
            f"Generated {len(embeddings)} embeddings using {settings.EMBEDDING_MODEL}",
            extra={"model": settings.EMBEDDING_MODEL, "count": len(embeddings)},
        )

        return embeddings

    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise


async def embed_texts_async(texts: list[str]) -> list[list[float]]:
    """Async wrapper around embed_texts using thread pool."""
    return await asyncio.to_thread(embed_texts, texts)


async def embed_query(
    text: str,
    user_id: str | None = None,
    cache: QueryEmbeddingCache | None = None,
) -> QueryEmbedding:
    """Embed a single query, degrading instead of raising.

    Vectors are served from the query embedding cache when present. No
    substitute vector is fabricated on failure: the result is flagged degraded
    so retrieval can run lexical-only and report low confidence.
    """
    if cache is None:
        cache = get_query_embedding_cache()
    cached = cache.get(text)
    if cached is not None:
        return QueryEmbedding(vector=cached)

    try:
        vectors = await embed_texts_async([text])
    except Exception as e:
        logger.warning(
            f"Query embedding failed, continuing in degraded mode: {e}",
            extra={"user_id": user_id} if user_id else None,
        )
        return QueryEmbedding(vector=None, degraded=True, error=str(e))

    if not vectors:
        return QueryEmbedding(vector=None, degraded=True, error="empty embedding response")

    cache.put(text, vectors[0])
    return QueryEmbedding(vector=vectors[0])
