"""Two-tier semantic response cache.

Keyed by (user_id, sha256(normalized query)). Lookups check a bounded
in-process LRU tier first, then the semantic_cache table. After an exact-hash
miss, a query whose embedding is within CACHE_SIMILARITY_THRESHOLD (cosine,
default 0.95) of a cached query of the same user is served that answer. A hit
bumps hit_count/last_hit; entries die at expires_at. Rows are also capped per user
so the table cannot grow without bound between reaper runs.

All public methods fail open: a lookup error is a miss, a store error is
logged and dropped.
"""

import hashlib
import re
import threading
from collections import OrderedDict
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any

from supabase import Client

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.retrieval_scorer import cosine_similarity
from app.core.schemas_context import CachedResponse, CacheEntry
from app.db import semantic_cache as cache_db

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Lower-case, trim and collapse whitespace."""
    return _WHITESPACE.sub(" ", (query or "").strip().lower())


def hash_query(query: str) -> str:
    """sha256 hex digest of the normalized query."""
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


class MemoryCacheTier:
    """Thread-safe LRU of live cache entries with TTL checks on read."""

    def __init__(self, max_entries: int = 1000):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: OrderedDict[tuple[str, str], CacheEntry] = OrderedDict()

    def get(self, user_id: str, query_hash: str, now: datetime) -> CacheEntry | None:
        key = (user_id, query_hash)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    def put(self, entry: CacheEntry) -> None:
        key = (entry.user_id, entry.query_hash)
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def find_similar(
        self,
        user_id: str,
        query_embedding: list[float],
        threshold: float,
        now: datetime,
    ) -> tuple[CacheEntry, float] | None:
        """Closest live entry of the user at or above ``threshold``, if any."""
        best: tuple[CacheEntry, float] | None = None
        with self._lock:
            for key, entry in list(self._entries.items()):
                if key[0] != user_id or not entry.query_embedding:
                    continue
                if entry.is_expired(now):
                    del self._entries[key]
                    continue
                similarity = round(cosine_similarity(query_embedding, entry.query_embedding), 6)
                if similarity >= threshold and (best is None or similarity > best[1]):
                    best = (entry, similarity)
            if best is not None:
                self._entries.move_to_end((user_id, best[0].query_hash))
        return best

    def drop(self, user_id: str, query_hashes: list[str]) -> int:
        with self._lock:
            dropped = 0
            for query_hash in query_hashes:
                if self._entries.pop((user_id, query_hash), None) is not None:
                    dropped += 1
            return dropped

    def drop_user(self, user_id: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k[0] == user_id]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def drop_expired(self, now: datetime) -> int:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def count_user(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for k in self._entries if k[0] == user_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@lru_cache(maxsize=1)
def get_memory_tier() -> MemoryCacheTier:
    """Process-wide memory tier sized from settings."""
    return MemoryCacheTier(get_settings().CACHE_MEMORY_MAX_ENTRIES)


class SemanticCache:
    """Cache facade used by the chat pipeline."""

    def __init__(
        self,
        supabase: Client,
        ttl_seconds: int | None = None,
        max_entries_per_user: int | None = None,
        memory: MemoryCacheTier | None = None,
    ):
        settings = get_settings()
        self.supabase = supabase
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.CACHE_TTL_SECONDS
        self.max_entries_per_user = (
            max_entries_per_user
            if max_entries_per_user is not None
            else settings.CACHE_MAX_ENTRIES_PER_USER
        )
        self.memory = memory if memory is not None else get_memory_tier()
        self.similarity_threshold = settings.CACHE_SIMILARITY_THRESHOLD
        self.similarity_candidates = settings.CACHE_SIMILARITY_CANDIDATES

    def lookup(self, user_id: str, query_hash: str, now: datetime | None = None) -> CacheEntry | None:
        """
        Return the live entry for (user_id, query_hash), or None.

        Any failure is logged and reported as a miss.
        """
        now = now or datetime.now(UTC)

        entry = self.memory.get(user_id, query_hash, now)
        tier = "memory"
        if entry is None:
            tier = "database"
            try:
                entry = cache_db.get_cache_entry(self.supabase, user_id, query_hash, now=now)
            except Exception as e:
                logger.warning(f"Cache lookup failed, treating as miss: {e}", extra={"user_id": user_id})
                return None
            if entry is None:
                return None

        entry = self._record_hit(user_id, entry, now)
        logger.info(f"Cache hit ({tier})", extra={"user_id": user_id, "hit_count": entry.hit_count})
        return entry

    def lookup_similar(
        self,
        user_id: str,
        query_embedding: list[float],
        now: datetime | None = None,
    ) -> CacheEntry | None:
        """
        Return a live entry whose cached query is a near paraphrase, or None.

        Runs after an exact-hash miss. Memory entries are compared in process;
        the database is searched through the match_semantic_cache RPC. Any
        failure is logged and reported as a miss.
        """
        if not query_embedding:
            return None
        now = now or datetime.now(UTC)

        match = self.memory.find_similar(user_id, query_embedding, self.similarity_threshold, now)
        tier = "memory"
        if match is None:
            tier = "database"
            try:
                matches = cache_db.match_cache_entries(
                    self.supabase,
                    user_id,
                    query_embedding,
                    threshold=self.similarity_threshold,
                    limit=self.similarity_candidates,
                )
            except Exception as e:
                logger.warning(f"Semantic cache match failed, treating as miss: {e}", extra={"user_id": user_id})
                return None
            if not matches:
                return None
            match = matches[0]

        entry, similarity = match
        entry = self._record_hit(user_id, entry, now)
        logger.info(
            f"Cache hit ({tier}, similarity={similarity:.3f})",
            extra={"user_id": user_id, "hit_count": entry.hit_count},
        )
        return entry

    def _record_hit(self, user_id: str, entry: CacheEntry, now: datetime) -> CacheEntry:
        # Hit bookkeeping must not turn a hit into an error
        try:
            new_count = cache_db.increment_hit(self.supabase, user_id, entry.query_hash)
        except Exception as e:
            logger.warning(f"Cache hit bookkeeping failed: {e}", extra={"user_id": user_id})
            new_count = None

        entry = entry.model_copy(
            update={
                "hit_count": new_count if new_count is not None else entry.hit_count + 1,
                "last_hit": now,
            }
        )
        self.memory.put(entry)
        return entry

    def store(
        self,
        user_id: str,
        query_hash: str,
        query_embedding: list[float] | None,
        response: CachedResponse,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> CacheEntry | None:
        """
        Cache an answer. Returns the stored entry, or None if the write failed.
        """
        now = now or datetime.now(UTC)
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        expires_at = now + timedelta(seconds=ttl)

        try:
            entry = cache_db.upsert_cache_entry(
                self.supabase, user_id, query_hash, query_embedding, response, expires_at, now=now
            )
        except Exception as e:
            logger.warning(f"Cache store failed, answer not cached: {e}", extra={"user_id": user_id})
            return None

        entry = entry.model_copy(update={"query_embedding": query_embedding})
        self.memory.put(entry)

        try:
            evicted = cache_db.trim_user_cache(self.supabase, user_id, self.max_entries_per_user)
        except Exception as e:
            logger.warning(f"Cache trim failed: {e}", extra={"user_id": user_id})
            evicted = []
        self.memory.drop(user_id, evicted)

        return entry

    def clear_user(self, user_id: str) -> int:
        """Drop a user's entries from both tiers. Returns database rows deleted."""
        self.memory.drop_user(user_id)
        return cache_db.delete_user_cache(self.supabase, user_id)

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Reap expired entries from both tiers. Returns database rows deleted."""
        self.memory.drop_expired(now or datetime.now(UTC))
        return cache_db.cleanup_expired_cache(self.supabase)

    def stats(self, user_id: str) -> dict[str, Any]:
        """Per-user cache statistics across both tiers."""
        db_stats = cache_db.get_cache_stats(self.supabase, user_id)
        return {
            **db_stats,
            "memory_entries": self.memory.count_user(user_id),
            "memory_capacity": self.memory.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "max_entries_per_user": self.max_entries_per_user,
        }
