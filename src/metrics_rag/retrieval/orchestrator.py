"""Read path: intent parsing, filtered vector search and context assembly."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from metrics_rag.config import RetrievalConfig
from metrics_rag.dates import to_ms
from metrics_rag.errors import MetricsRagError
from metrics_rag.ingest.embedder import EmbeddingClient
from metrics_rag.obs.logging import get_logger
from metrics_rag.obs.tracing import Timer
from metrics_rag.retrieval.context import build_context
from metrics_rag.retrieval.intent import IntentParser, detect_user_correction
from metrics_rag.retrieval.vector_store import VectorStore
from metrics_rag.types import (
    DateRange,
    MemoryType,
    ParsedIntent,
    QueryFilters,
    ScoredChunk,
    UserMemory,
)

logger = get_logger(__name__)

FALLBACK_LABEL = "Last 30 Days (Fallback)"


@dataclass(slots=True)
class RetrievalStats:
    embedding_ms: float = 0.0
    search_ms: float = 0.0
    total_ms: float = 0.0
    chunks_retrieved: int = 0
    memories_retrieved: int = 0
    used_fallback: bool = False


@dataclass(slots=True)
class RetrievalResult:
    context: str
    chunks: list[ScoredChunk]
    user_memories: list[UserMemory]
    intent: ParsedIntent
    stats: RetrievalStats = field(default_factory=RetrievalStats)


class RetrievalOrchestrator:
    """Builds grounded context for a user query.

    Embedding and vector-store failures propagate to the caller. User-memory
    retrieval is best effort and degrades to zero memories.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStore,
        intent_parser: IntentParser | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.intent_parser = intent_parser or IntentParser()
        self.config = config or RetrievalConfig()

    def retrieve_context(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None = None,
        date_range: DateRange | None = None,
        *,
        top_k: int | None = None,
        min_score: float | None = None,
        include_user_memory: bool = True,
        now: datetime | None = None,
    ) -> RetrievalResult:
        reference = now or datetime.now()
        top_k = top_k or self.config.top_k
        min_score = self.config.min_score if min_score is None else min_score
        stats = RetrievalStats()

        with Timer() as total:
            intent = self.intent_parser.parse(query, reference, date_range)
            logger.info(
                "[Retrieval] tenant=%s timeframe=%s platforms=%s metrics=%s confidence=%.2f",
                tenant_id,
                intent.timeframe.label,
                intent.platforms,
                intent.metric_types,
                intent.confidence,
            )

            with Timer() as embed_timer:
                vector = self.embedder.embed(query)
            stats.embedding_ms = embed_timer.elapsed_ms

            with Timer() as search_timer:
                chunks = self.store.query(
                    vector,
                    tenant_id,
                    top_k=top_k,
                    min_score=min_score,
                    filters=QueryFilters(
                        time_range=(intent.timeframe.start_time, intent.timeframe.end_time),
                        metric_types=list(intent.metric_types),
                        platforms=list(intent.platforms),
                    ),
                )
                if not chunks:
                    chunks = self._fallback(vector, tenant_id, top_k, intent, reference)
                    stats.used_fallback = bool(chunks)
            stats.search_ms = search_timer.elapsed_ms

            memories: list[UserMemory] = []
            if include_user_memory and user_id:
                memories = self._retrieve_memories(vector, user_id)

            context = build_context(chunks, intent, memories)

        stats.total_ms = total.elapsed_ms
        stats.chunks_retrieved = len(chunks)
        stats.memories_retrieved = len(memories)
        logger.info(
            "[Retrieval] tenant=%s chunks=%d memories=%d fallback=%s total_ms=%.1f",
            tenant_id,
            stats.chunks_retrieved,
            stats.memories_retrieved,
            stats.used_fallback,
            stats.total_ms,
        )
        return RetrievalResult(
            context=context,
            chunks=chunks,
            user_memories=memories,
            intent=intent,
            stats=stats,
        )

    def _fallback(
        self,
        vector: list[float],
        tenant_id: str,
        top_k: int,
        intent: ParsedIntent,
        reference: datetime,
    ) -> list[ScoredChunk]:
        logger.info("[Retrieval] No data for %s, trying trailing fallback window", intent.timeframe.label)
        window_start = reference - timedelta(days=self.config.fallback_window_days)
        chunks = self.store.query(
            vector,
            tenant_id,
            top_k=top_k,
            min_score=self.config.fallback_min_score,
            filters=QueryFilters(time_range=(to_ms(window_start), to_ms(reference))),
        )
        if not chunks:
            return []

        timeframe = intent.timeframe
        timeframe.label = FALLBACK_LABEL
        timeframe.kind = "fallback_window"
        timeframe.start_date = window_start.date()
        timeframe.end_date = reference.date()
        timeframe.start_time = to_ms(window_start)
        timeframe.end_time = to_ms(reference)
        for item in chunks:
            item.chunk = replace(
                item.chunk,
                metadata=replace(
                    item.chunk.metadata,
                    is_fallback_data=True,
                    fallback_period=item.chunk.metadata.fallback_period or FALLBACK_LABEL,
                ),
            )
        return chunks

    def _retrieve_memories(self, vector: list[float], user_id: str) -> list[UserMemory]:
        try:
            return self.store.retrieve_user_memories(
                vector,
                user_id,
                top_k=self.config.memory_top_k,
                min_score=self.config.memory_min_score,
            )
        except Exception as exc:
            logger.warning("[Retrieval] Failed to retrieve user memories: %s", exc)
            return []

    def store_user_correction(
        self,
        user_id: str,
        tenant_id: str,
        original_query: str,
        correction: str,
        memory_type: MemoryType = MemoryType.PREFERENCE,
        *,
        now: datetime | None = None,
    ) -> UserMemory:
        memory = UserMemory(
            memory_id=str(uuid.uuid4()),
            user_id=user_id,
            project_id=tenant_id,
            timestamp=to_ms(now or datetime.now()),
            memory_type=memory_type,
            original_query=original_query,
            correction=correction,
        )
        self.store.store_user_memory(memory, self.embedder.embed(correction))
        logger.info("[Retrieval] Stored user %s for user %s", memory_type.value, user_id)
        return memory

    def learn_from_message(
        self,
        user_id: str,
        tenant_id: str,
        message: str,
        *,
        now: datetime | None = None,
    ) -> UserMemory | None:
        """Store the message as a memory when it reads as a correction or preference."""

        signal = detect_user_correction(message)
        if not signal.is_correction or signal.memory_type is None or not signal.instruction:
            return None
        return self.store_user_correction(
            user_id,
            tenant_id,
            message,
            signal.instruction,
            signal.memory_type,
            now=now,
        )

    def check_data_freshness(
        self, tenant_id: str, now: datetime | None = None
    ) -> dict[str, Any]:
        try:
            vector_count = self.store.count(tenant_id)
            is_recent = self.store.has_recent_data(
                tenant_id, self.config.freshness_hours, now=now
            )
        except MetricsRagError as exc:
            logger.warning("[Retrieval] Freshness check failed for tenant %s: %s", tenant_id, exc)
            return {"has_data": False, "is_recent": False, "vector_count": 0}
        return {"has_data": vector_count > 0, "is_recent": is_recent, "vector_count": vector_count}

    def project_status(self, tenant_id: str, now: datetime | None = None) -> dict[str, Any]:
        freshness = self.check_data_freshness(tenant_id, now=now)
        hours = self.config.freshness_hours
        if not freshness["has_data"]:
            return {
                "ready": False,
                "message": "No data indexed. Waiting for background sync.",
                "vector_count": 0,
                "last_sync_age": "Never",
            }
        if not freshness["is_recent"]:
            return {
                "ready": True,
                "message": "Data available but may be outdated.",
                "vector_count": freshness["vector_count"],
                "last_sync_age": f"> {hours} hours",
            }
        return {
            "ready": True,
            "message": "Ready with fresh data.",
            "vector_count": freshness["vector_count"],
            "last_sync_age": f"< {hours} hours",
        }
