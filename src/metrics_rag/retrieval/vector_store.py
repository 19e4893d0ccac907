"""Tenant-partitioned vector store contract and concrete adapters.

Records are stored as flat scalar metadata (the shape every external vector
service accepts) and filtered with a Chroma-style boolean `where` expression.
`build_filter` always puts the tenant equality clause first; no code path in
this module issues a tenant-scoped read without it.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from math import sqrt
from typing import Any, Protocol

from metrics_rag.config import VectorStoreConfig
from metrics_rag.dates import day_start_ms, from_ms, parse_iso_date, to_ms
from metrics_rag.errors import VectorStoreError
from metrics_rag.obs.logging import get_logger
from metrics_rag.types import (
    ChunkMetadata,
    MemoryType,
    MetricChunk,
    QueryFilters,
    ScoredChunk,
    UserMemory,
)

logger = get_logger(__name__)

Where = dict[str, Any]


class VectorStore(Protocol):
    """Contract shared by the production adapter and the in-memory store."""

    def upsert(
        self, tenant_id: str, chunks: Sequence[MetricChunk], vectors: Sequence[Sequence[float]]
    ) -> int:
        """Insert or replace chunk vectors; returns the number written."""

    def query(
        self,
        vector: Sequence[float],
        tenant_id: str,
        *,
        top_k: int = 10,
        min_score: float = 0.0,
        filters: QueryFilters | None = None,
    ) -> list[ScoredChunk]:
        """Similarity search restricted to one tenant, best first."""

    def delete_by_tenant(self, tenant_id: str) -> None:
        """Remove every chunk of a tenant."""

    def delete_older_than(self, tenant_id: str, cutoff_ms: int) -> None:
        """Remove a tenant's chunks whose period starts before `cutoff_ms`."""

    def count(self, tenant_id: str) -> int:
        """Number of indexed chunks for a tenant (bounded)."""

    def has_recent_data(
        self, tenant_id: str, within_hours: int, now: datetime | None = None
    ) -> bool:
        """True when at least one chunk was indexed within the window."""

    def store_user_memory(self, memory: UserMemory, vector: Sequence[float]) -> None:
        """Append a memory to the per-user memory partition."""

    def retrieve_user_memories(
        self,
        vector: Sequence[float],
        user_id: str,
        *,
        top_k: int = 3,
        min_score: float = 0.7,
    ) -> list[UserMemory]:
        """Similarity search over one user's memories."""


def build_filter(tenant_id: str, filters: QueryFilters | None = None) -> Where:
    """Compose the boolean filter for a tenant-scoped query.

    Tenant equality is mandatory. The time range bounds the period-start
    `timestamp` field, metric types and platforms are each an OR over their
    values, and all clauses are ANDed.
    """

    if not tenant_id:
        raise VectorStoreError("tenant_id is required for every vector store operation")

    clauses: list[Where] = [{"tenant_id": {"$eq": tenant_id}}]
    if filters is not None:
        if filters.time_range is not None:
            start_ms, end_ms = filters.time_range
            clauses.append({"timestamp": {"$gte": start_ms}})
            clauses.append({"timestamp": {"$lte": end_ms}})
        if filters.metric_types:
            clauses.append({"metric_type": {"$in": list(filters.metric_types)}})
        if filters.platforms:
            clauses.append({"platform": {"$in": list(filters.platforms)}})
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def matches_filter(metadata: dict[str, Any], where: Where | None) -> bool:
    """Evaluate a `build_filter` expression against flat record metadata."""

    if not where:
        return True
    for key, condition in where.items():
        if key == "$and":
            if not all(matches_filter(metadata, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches_filter(metadata, clause) for clause in condition):
                return False
        elif isinstance(condition, dict):
            if not all(
                _compare(metadata.get(key), op, operand) for op, operand in condition.items()
            ):
                return False
        elif metadata.get(key) != condition:
            return False
    return True


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op == "$eq":
        return value == operand
    if op == "$ne":
        return value != operand
    if op == "$in":
        return value in operand
    if op == "$nin":
        return value not in operand
    if value is None:
        return False
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    if op == "$lt":
        return value < operand
    if op == "$lte":
        return value <= operand
    raise VectorStoreError(f"Unsupported filter operator: {op}")


def chunk_to_record(chunk: MetricChunk) -> dict[str, Any]:
    """Flatten chunk metadata into scalar fields; None is never stored."""

    meta = chunk.metadata
    return {
        "tenant_id": meta.tenant_id,
        "metric_type": meta.metric_type,
        "platform": meta.platform or "",
        "start_date": meta.start_date.isoformat(),
        "end_date": meta.end_date.isoformat(),
        "timestamp": day_start_ms(meta.start_date),
        "date_range_label": meta.date_range_label,
        "category": meta.category,
        "is_fallback_data": meta.is_fallback_data,
        "fallback_period": meta.fallback_period or "",
        "created_at_ms": to_ms(meta.created_at),
        "expires_at_ms": to_ms(meta.expires_at),
        "metrics_json": json.dumps(meta.metrics_snapshot, sort_keys=True, default=str),
    }


def record_to_chunk(chunk_id: str, document: str, record: dict[str, Any]) -> MetricChunk:
    return MetricChunk(
        chunk_id=chunk_id,
        text=document,
        metadata=ChunkMetadata(
            tenant_id=str(record["tenant_id"]),
            metric_type=str(record["metric_type"]),
            platform=record.get("platform") or None,
            start_date=parse_iso_date(record["start_date"]),
            end_date=parse_iso_date(record["end_date"]),
            date_range_label=str(record.get("date_range_label", "")),
            category=str(record.get("category", "")),
            text_content=document,
            metrics_snapshot=json.loads(record.get("metrics_json") or "{}"),
            is_fallback_data=bool(record.get("is_fallback_data", False)),
            fallback_period=record.get("fallback_period") or None,
            created_at=from_ms(int(record["created_at_ms"])),
            expires_at=from_ms(int(record["expires_at_ms"])),
        ),
    )


def memory_to_record(memory: UserMemory) -> dict[str, Any]:
    return {
        "user_id": memory.user_id,
        "project_id": memory.project_id,
        "timestamp": memory.timestamp,
        "memory_type": memory.memory_type.value,
        "original_query": memory.original_query,
        "correction": memory.correction,
    }


def record_to_memory(memory_id: str, record: dict[str, Any]) -> UserMemory:
    return UserMemory(
        memory_id=memory_id,
        user_id=str(record["user_id"]),
        project_id=str(record.get("project_id", "")),
        timestamp=int(record.get("timestamp", 0)),
        memory_type=MemoryType(record.get("memory_type", MemoryType.PREFERENCE.value)),
        original_query=str(record.get("original_query", "")),
        correction=str(record.get("correction", "")),
    )


def _check_upsert(
    tenant_id: str, chunks: Sequence[MetricChunk], vectors: Sequence[Sequence[float]]
) -> None:
    if not tenant_id:
        raise VectorStoreError("tenant_id is required for upsert")
    if len(chunks) != len(vectors):
        raise VectorStoreError("chunks and vectors must have the same length")
    for chunk in chunks:
        if chunk.metadata.tenant_id != tenant_id:
            raise VectorStoreError(
                f"Chunk {chunk.chunk_id} belongs to tenant {chunk.metadata.tenant_id}, "
                f"not {tenant_id}"
            )


def _isolate(tenant_id: str, results: list[ScoredChunk]) -> list[ScoredChunk]:
    kept = [item for item in results if item.chunk.metadata.tenant_id == tenant_id]
    if len(kept) != len(results):
        logger.error(
            "[VectorStore] Dropped %d cross-tenant results for tenant %s",
            len(results) - len(kept),
            tenant_id,
        )
    return kept


def _rank(results: list[ScoredChunk], top_k: int) -> list[ScoredChunk]:
    ordered = sorted(results, key=lambda item: item.score, reverse=True)[:top_k]
    for index, item in enumerate(ordered, start=1):
        item.rank = index
    return ordered


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))


def _recent_cutoff_ms(within_hours: int, now: datetime | None) -> int:
    return to_ms((now or datetime.now()) - timedelta(hours=within_hours))


@dataclass(slots=True)
class _StoredVector:
    chunk: MetricChunk
    record: dict[str, Any]
    embedding: list[float]


@dataclass(slots=True)
class _StoredMemory:
    memory: UserMemory
    record: dict[str, Any]
    embedding: list[float]


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local prototyping."""

    def __init__(self, config: VectorStoreConfig | None = None) -> None:
        self.config = config or VectorStoreConfig()
        self._store: dict[str, _StoredVector] = {}
        self._memories: dict[str, _StoredMemory] = {}

    def upsert(
        self, tenant_id: str, chunks: Sequence[MetricChunk], vectors: Sequence[Sequence[float]]
    ) -> int:
        _check_upsert(tenant_id, chunks, vectors)
        for chunk, vector in zip(chunks, vectors, strict=True):
            self._store[chunk.chunk_id] = _StoredVector(
                chunk=chunk, record=chunk_to_record(chunk), embedding=list(vector)
            )
        return len(chunks)

    def query(
        self,
        vector: Sequence[float],
        tenant_id: str,
        *,
        top_k: int = 10,
        min_score: float = 0.0,
        filters: QueryFilters | None = None,
    ) -> list[ScoredChunk]:
        where = build_filter(tenant_id, filters)
        scored = [
            ScoredChunk(chunk=rec.chunk, score=_clamp(_cosine_similarity(vector, rec.embedding)))
            for rec in self._store.values()
            if matches_filter(rec.record, where)
        ]
        scored = [item for item in scored if item.score >= min_score]
        return _rank(_isolate(tenant_id, scored), top_k)

    def delete_by_tenant(self, tenant_id: str) -> None:
        self._delete_where(build_filter(tenant_id))

    def delete_older_than(self, tenant_id: str, cutoff_ms: int) -> None:
        self._delete_where(
            {"$and": [build_filter(tenant_id), {"timestamp": {"$lt": cutoff_ms}}]}
        )

    def count(self, tenant_id: str) -> int:
        where = build_filter(tenant_id)
        total = sum(1 for rec in self._store.values() if matches_filter(rec.record, where))
        return min(total, self.config.count_limit)

    def has_recent_data(
        self, tenant_id: str, within_hours: int, now: datetime | None = None
    ) -> bool:
        where = {
            "$and": [
                build_filter(tenant_id),
                {"created_at_ms": {"$gte": _recent_cutoff_ms(within_hours, now)}},
            ]
        }
        return any(matches_filter(rec.record, where) for rec in self._store.values())

    def store_user_memory(self, memory: UserMemory, vector: Sequence[float]) -> None:
        if not memory.user_id:
            raise VectorStoreError("user_id is required to store a memory")
        self._memories[memory.memory_id] = _StoredMemory(
            memory=memory, record=memory_to_record(memory), embedding=list(vector)
        )

    def retrieve_user_memories(
        self,
        vector: Sequence[float],
        user_id: str,
        *,
        top_k: int = 3,
        min_score: float = 0.7,
    ) -> list[UserMemory]:
        if not user_id:
            raise VectorStoreError("user_id is required to retrieve memories")
        scored = [
            (_clamp(_cosine_similarity(vector, rec.embedding)), rec.memory)
            for rec in self._memories.values()
            if rec.memory.user_id == user_id
        ]
        scored = [item for item in scored if item[0] >= min_score]
        scored.sort(key=lambda item: item[0], reverse=True)
        return [memory for _, memory in scored[:top_k]]

    def _delete_where(self, where: Where) -> None:
        doomed = [key for key, rec in self._store.items() if matches_filter(rec.record, where)]
        for key in doomed:
            del self._store[key]


class ChromaVectorStore:
    """Production adapter over a Chroma client (persistent or HTTP).

    Both collections use cosine distance, so `1 - distance` is the similarity,
    clamped into `[0, 1]`. Client exceptions surface as `VectorStoreError`.
    """

    def __init__(self, client: Any, config: VectorStoreConfig | None = None) -> None:
        self.config = config or VectorStoreConfig()
        try:
            self._analytics = client.get_or_create_collection(
                name=self.config.analytics_collection,
                metadata={"hnsw:space": "cosine"},
            )
            self._memory = client.get_or_create_collection(
                name=self.config.memory_collection,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as exc:
            raise VectorStoreError(f"Failed to open collections: {exc}") from exc

    def upsert(
        self, tenant_id: str, chunks: Sequence[MetricChunk], vectors: Sequence[Sequence[float]]
    ) -> int:
        _check_upsert(tenant_id, chunks, vectors)
        size = self.config.upsert_batch_size
        try:
            for start in range(0, len(chunks), size):
                batch = chunks[start : start + size]
                self._analytics.upsert(
                    ids=[chunk.chunk_id for chunk in batch],
                    embeddings=[list(vector) for vector in vectors[start : start + size]],
                    documents=[chunk.text for chunk in batch],
                    metadatas=[chunk_to_record(chunk) for chunk in batch],
                )
        except Exception as exc:
            raise VectorStoreError(f"Upsert failed for tenant {tenant_id}: {exc}") from exc
        logger.info("[VectorStore] Upserted %d chunks for tenant %s", len(chunks), tenant_id)
        return len(chunks)

    def query(
        self,
        vector: Sequence[float],
        tenant_id: str,
        *,
        top_k: int = 10,
        min_score: float = 0.0,
        filters: QueryFilters | None = None,
    ) -> list[ScoredChunk]:
        where = build_filter(tenant_id, filters)
        try:
            response = self._analytics.query(
                query_embeddings=[list(vector)],
                n_results=top_k,
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(f"Query failed for tenant {tenant_id}: {exc}") from exc

        ids = (response.get("ids") or [[]])[0]
        documents = (response.get("documents") or [[]])[0]
        metadatas = (response.get("metadatas") or [[]])[0]
        distances = (response.get("distances") or [[]])[0]

        results: list[ScoredChunk] = []
        for chunk_id, document, record, distance in zip(
            ids, documents, metadatas, distances, strict=True
        ):
            score = _clamp(1.0 - float(distance))
            if score < min_score:
                continue
            results.append(
                ScoredChunk(chunk=record_to_chunk(chunk_id, document or "", dict(record)), score=score)
            )
        return _rank(_isolate(tenant_id, results), top_k)

    def delete_by_tenant(self, tenant_id: str) -> None:
        self._delete(build_filter(tenant_id), tenant_id)

    def delete_older_than(self, tenant_id: str, cutoff_ms: int) -> None:
        self._delete(
            {"$and": [build_filter(tenant_id), {"timestamp": {"$lt": cutoff_ms}}]},
            tenant_id,
        )

    def count(self, tenant_id: str) -> int:
        try:
            response = self._analytics.get(
                where=build_filter(tenant_id), limit=self.config.count_limit, include=[]
            )
        except Exception as exc:
            raise VectorStoreError(f"Count failed for tenant {tenant_id}: {exc}") from exc
        return len(response.get("ids") or [])

    def has_recent_data(
        self, tenant_id: str, within_hours: int, now: datetime | None = None
    ) -> bool:
        where = {
            "$and": [
                build_filter(tenant_id),
                {"created_at_ms": {"$gte": _recent_cutoff_ms(within_hours, now)}},
            ]
        }
        try:
            response = self._analytics.get(where=where, limit=1, include=[])
        except Exception as exc:
            raise VectorStoreError(f"Freshness probe failed for tenant {tenant_id}: {exc}") from exc
        return bool(response.get("ids"))

    def store_user_memory(self, memory: UserMemory, vector: Sequence[float]) -> None:
        if not memory.user_id:
            raise VectorStoreError("user_id is required to store a memory")
        try:
            self._memory.upsert(
                ids=[memory.memory_id],
                embeddings=[list(vector)],
                documents=[memory.correction],
                metadatas=[memory_to_record(memory)],
            )
        except Exception as exc:
            raise VectorStoreError(f"Failed to store memory for user {memory.user_id}: {exc}") from exc

    def retrieve_user_memories(
        self,
        vector: Sequence[float],
        user_id: str,
        *,
        top_k: int = 3,
        min_score: float = 0.7,
    ) -> list[UserMemory]:
        if not user_id:
            raise VectorStoreError("user_id is required to retrieve memories")
        try:
            response = self._memory.query(
                query_embeddings=[list(vector)],
                n_results=top_k,
                where={"user_id": {"$eq": user_id}},
                include=["metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(f"Memory query failed for user {user_id}: {exc}") from exc

        ids = (response.get("ids") or [[]])[0]
        metadatas = (response.get("metadatas") or [[]])[0]
        distances = (response.get("distances") or [[]])[0]
        memories: list[UserMemory] = []
        for memory_id, record, distance in zip(ids, metadatas, distances, strict=True):
            if _clamp(1.0 - float(distance)) >= min_score:
                memories.append(record_to_memory(memory_id, dict(record)))
        return memories

    def _delete(self, where: Where, tenant_id: str) -> None:
        try:
            self._analytics.delete(where=where)
        except Exception as exc:
            raise VectorStoreError(f"Delete failed for tenant {tenant_id}: {exc}") from exc
        logger.info("[VectorStore] Deleted chunks for tenant %s", tenant_id)


def _cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
