"""Per-user retrieval-augmented chat pipeline.

    message
      -> hash -> cache lookup --hit--> cached answer
      -> embed query -> paraphrase cache lookup --hit--> cached answer
      -> miss: match candidates -> score -> load profile
         -> assemble -> answer LLM -> cache store (not when degraded)
         -> remember the utterance in the knowledge store

Every stage except the answer LLM call fails open: a broken cache is a miss,
broken retrieval is empty context, a broken profile read is no profile and
broken writes are logged and skipped. The insight update is not run here; the
route schedules ``process_user_context`` after the response is sent.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from openai import OpenAI
from supabase import Client

from app.chains.generate_chat_answer import generate_chat_answer
from app.core.config import Settings, get_settings
from app.core.context_assembler import assemble_context
from app.core.embeddings import QueryEmbedding, embed_query
from app.core.logging import get_logger
from app.core.metrics import PerformanceTracker, timer, track_performance
from app.core.retrieval_scorer import DEGRADED_CONFIDENCE_CAP, RetrievalResult, score_candidates
from app.core.schemas_context import (
    AIInsightProfile,
    CachedResponse,
    CacheEntry,
    ChatTurn,
    KnowledgeFragment,
)
from app.core.semantic_cache import SemanticCache, hash_query
from app.core.utterance_signals import (
    classify_content_type,
    estimate_importance,
    extract_sentiment,
    extract_topics,
    is_meaningful,
)
from app.db import knowledge as knowledge_db
from app.db import rag_metrics
from app.db import user_insights as insights_db

logger = get_logger(__name__)

NO_CONTEXT_CONFIDENCE = 0.5


@dataclass
class ChatResult:
    """Answer plus provenance for one chat turn."""

    answer: str
    sources: list[str] = field(default_factory=list)
    confidence: float = 0.0
    cache_hit: bool = False
    context_count: int = 0
    degraded: bool = False


def answer_confidence(retrieval: RetrievalResult) -> float:
    """Confidence reported for a freshly generated answer."""
    confidence = retrieval.top_confidence if retrieval.fragments else NO_CONTEXT_CONFIDENCE
    if retrieval.degraded:
        confidence = min(confidence, DEGRADED_CONFIDENCE_CAP)
    return round(confidence, 4)


class ChatPipeline:
    """Wires the cache, knowledge store, scorer, assembler and answer chain."""

    def __init__(
        self,
        supabase: Client,
        cache: SemanticCache | None = None,
        openai_client: OpenAI | None = None,
        settings: Settings | None = None,
    ):
        self.supabase = supabase
        self.settings = settings or get_settings()
        self.cache = cache or SemanticCache(supabase)
        self.openai_client = openai_client

    async def run(self, user_id: str, message: str, history: list[ChatTurn] | None = None) -> ChatResult:
        """
        Answer one message for one user.

        Raises:
            ValueError: On an empty message or user id
            Exception: If the answer LLM call fails
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")
        if not message or not message.strip():
            raise ValueError("message must not be empty")

        history = history or []
        result: ChatResult | None = None
        perf: PerformanceTracker | None = None

        try:
            with track_performance("chat_request", user_id) as perf:
                result = await self._answer(user_id, message, history, perf)
            return result
        finally:
            if perf is not None:
                self._persist_metric(perf, message, result)

    async def _answer(
        self,
        user_id: str,
        message: str,
        history: list[ChatTurn],
        perf: PerformanceTracker,
    ) -> ChatResult:
        query_hash = hash_query(message)

        entry = self.cache.lookup(user_id, query_hash)
        perf.record_db_call()
        if entry is not None:
            perf.record_cache_hit()
            return self._cached_result(entry)

        embedding = await embed_query(message, user_id=user_id)
        if not embedding.degraded:
            entry = self.cache.lookup_similar(user_id, embedding.vector)
            perf.record_db_call()
            if entry is not None:
                perf.record_cache_hit()
                return self._cached_result(entry)
        perf.record_cache_miss()

        retrieval = self.retrieve(user_id, message, embedding)
        perf.record_db_call()
        perf.record_retrieval(retrieval.candidate_count, len(retrieval.fragments))

        profile = self._load_profile(user_id)
        perf.record_db_call()

        context = assemble_context(message, history, retrieval, profile)

        with timer("Chat answer", user_id):
            answer = await asyncio.to_thread(
                generate_chat_answer, context, self.openai_client, user_id
            )
        perf.record_llm_call()

        result = ChatResult(
            answer=answer,
            sources=context.sources,
            confidence=answer_confidence(retrieval),
            context_count=len(retrieval.fragments),
            degraded=embedding.degraded,
        )

        if embedding.degraded:
            logger.info("Degraded answer not cached", extra={"user_id": user_id})
        else:
            self.cache.store(
                user_id,
                query_hash,
                embedding.vector,
                CachedResponse(answer=answer, sources=result.sources, confidence=result.confidence),
            )
            perf.record_db_call()

        self.remember_utterance(user_id, message, answer, embedding, related_count=len(retrieval.fragments))
        perf.record_db_call()

        return result

    @staticmethod
    def _cached_result(entry: CacheEntry) -> ChatResult:
        cached = entry.cached_response
        return ChatResult(
            answer=cached.answer,
            sources=list(cached.sources),
            confidence=cached.confidence,
            cache_hit=True,
        )

    def retrieve(
        self,
        user_id: str,
        message: str,
        embedding: QueryEmbedding,
        top_k: int | None = None,
    ) -> RetrievalResult:
        """Candidates + scoring; any failure yields empty context.

        ``top_k`` defaults to RETRIEVAL_TOP_K; the candidate fetch is widened to
        at least ``top_k`` rows.
        """
        top_k = top_k or self.settings.RETRIEVAL_TOP_K
        try:
            with timer("Knowledge match", user_id, log_level="debug"):
                rows = knowledge_db.match_candidates(
                    self.supabase,
                    user_id,
                    message,
                    embedding.vector,
                    limit=max(self.settings.RETRIEVAL_CANDIDATE_COUNT, top_k),
                )
        except Exception as e:
            logger.warning(f"Retrieval failed, answering without context: {e}", extra={"user_id": user_id})
            return RetrievalResult(degraded=embedding.degraded)

        retrieval = score_candidates(
            message,
            rows,
            user_id=user_id,
            top_k=top_k,
            degraded=embedding.degraded,
            query_embedding=embedding.vector,
        )
        if retrieval.fragments:
            knowledge_db.record_access(self.supabase, user_id, [str(f.id) for f in retrieval.fragments])
        return retrieval

    def _load_profile(self, user_id: str) -> AIInsightProfile | None:
        try:
            return insights_db.get_profile(self.supabase, user_id)
        except Exception as e:
            logger.warning(f"Profile unavailable, answering without it: {e}", extra={"user_id": user_id})
            return None

    def remember_utterance(
        self,
        user_id: str,
        message: str,
        answer: str,
        embedding: QueryEmbedding,
        related_count: int = 0,
    ) -> KnowledgeFragment | None:
        """
        Append a meaningful user message to the knowledge store.

        The query embedding is reused as the fragment embedding. Failures are
        logged and return None.
        """
        if not is_meaningful(message):
            return None

        try:
            return knowledge_db.add_fragment(
                self.supabase,
                user_id,
                message.strip(),
                content_type=classify_content_type(message),
                embedding=embedding.vector,
                topics=extract_topics(message, answer),
                sentiment=extract_sentiment(message),
                importance=estimate_importance(message, answer, related_count),
                metadata={"source": "chat", "degraded": embedding.degraded},
            )
        except Exception as e:
            logger.warning(f"Failed to remember utterance: {e}", extra={"user_id": user_id})
            return None

    def _persist_metric(self, perf: PerformanceTracker, message: str, result: ChatResult | None) -> None:
        if not self.settings.PERSIST_RAG_METRICS or perf.duration_ms is None:
            return

        metadata: dict[str, Any] = {
            "cache_hit": bool(result and result.cache_hit),
            "degraded": bool(result and result.degraded),
            "llm_calls": perf.llm_calls,
        }
        rag_metrics.insert_metric(
            self.supabase,
            operation=perf.operation,
            duration_ms=perf.duration_ms,
            success=perf.success,
            user_id=perf.user_id,
            query_length=len(message),
            context_length=result.context_count if result else None,
            docs_retrieved=perf.docs_retrieved,
            docs_final=perf.docs_final,
            metadata=metadata,
        )
