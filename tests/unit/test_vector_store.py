from datetime import date, datetime, timedelta

import pytest

from metrics_rag.dates import day_start_ms, to_ms
from metrics_rag.errors import VectorStoreError
from metrics_rag.retrieval.vector_store import (
    ChromaVectorStore,
    InMemoryVectorStore,
    build_filter,
    chunk_to_record,
    matches_filter,
    record_to_chunk,
)
from metrics_rag.types import ChunkMetadata, MemoryType, MetricChunk, QueryFilters, UserMemory

NOW = datetime(2025, 3, 15, 9, 0)


def _chunk(
    tenant_id: str,
    chunk_id: str,
    start: date,
    *,
    metric_type: str = "overview",
    platform: str = "general",
    created_at: datetime = NOW,
) -> MetricChunk:
    text = f"{metric_type} metrics for {tenant_id} from {start.isoformat()}"
    return MetricChunk(
        chunk_id=chunk_id,
        text=text,
        metadata=ChunkMetadata(
            tenant_id=tenant_id,
            metric_type=metric_type,
            platform=platform,
            start_date=start,
            end_date=start + timedelta(days=6),
            date_range_label="Week",
            category=metric_type,
            text_content=text,
            metrics_snapshot={"sessions": 10},
            created_at=created_at,
            expires_at=created_at + timedelta(days=90),
        ),
    )


SAME_VECTOR = [1.0, 0.0, 0.0]


def test_query_never_crosses_tenants() -> None:
    store = InMemoryVectorStore()
    start = date(2025, 3, 8)
    store.upsert("tenant-a", [_chunk("tenant-a", f"a-{i}", start) for i in range(3)], [SAME_VECTOR] * 3)
    store.upsert("tenant-b", [_chunk("tenant-b", f"b-{i}", start) for i in range(3)], [SAME_VECTOR] * 3)

    results = store.query(SAME_VECTOR, "tenant-a", top_k=10)

    assert len(results) == 3
    assert {item.chunk.metadata.tenant_id for item in results} == {"tenant-a"}
    assert [item.rank for item in results] == [1, 2, 3]


def test_upsert_rejects_foreign_chunks_and_length_mismatch() -> None:
    store = InMemoryVectorStore()
    chunk = _chunk("tenant-b", "b-1", date(2025, 3, 8))

    with pytest.raises(VectorStoreError):
        store.upsert("tenant-a", [chunk], [SAME_VECTOR])
    with pytest.raises(VectorStoreError):
        store.upsert("tenant-b", [chunk], [])


def test_upsert_is_idempotent_on_chunk_id() -> None:
    store = InMemoryVectorStore()
    chunk = _chunk("tenant-a", "a-1", date(2025, 3, 8))

    store.upsert("tenant-a", [chunk], [SAME_VECTOR])
    store.upsert("tenant-a", [chunk], [SAME_VECTOR])

    assert store.count("tenant-a") == 1


def test_filters_and_min_score() -> None:
    store = InMemoryVectorStore()
    feb = date(2025, 2, 3)
    mar = date(2025, 3, 8)
    store.upsert(
        "tenant-a",
        [
            _chunk("tenant-a", "feb-ads", feb, metric_type="platform", platform="googleAds"),
            _chunk("tenant-a", "mar-ads", mar, metric_type="platform", platform="googleAds"),
            _chunk("tenant-a", "mar-traffic", mar),
            _chunk("tenant-a", "mar-far", mar, metric_type="conversion"),
        ],
        [SAME_VECTOR, SAME_VECTOR, SAME_VECTOR, [0.0, 1.0, 0.0]],
    )

    march = (day_start_ms(date(2025, 3, 1)), day_start_ms(date(2025, 3, 31)))
    ads_in_march = store.query(
        SAME_VECTOR,
        "tenant-a",
        filters=QueryFilters(time_range=march, platforms=["googleAds"]),
    )
    march_relevant = store.query(
        SAME_VECTOR, "tenant-a", min_score=0.6, filters=QueryFilters(time_range=march)
    )

    assert [item.chunk.chunk_id for item in ads_in_march] == ["mar-ads"]
    assert {item.chunk.chunk_id for item in march_relevant} == {"mar-ads", "mar-traffic"}
    assert all(0.0 <= item.score <= 1.0 for item in march_relevant)


def test_build_filter_requires_tenant_and_ands_clauses() -> None:
    with pytest.raises(VectorStoreError):
        build_filter("")

    assert build_filter("tenant-a") == {"tenant_id": {"$eq": "tenant-a"}}
    where = build_filter(
        "tenant-a",
        QueryFilters(time_range=(1, 2), metric_types=["overview", "conversion"], platforms=["googleAds"]),
    )
    assert where == {
        "$and": [
            {"tenant_id": {"$eq": "tenant-a"}},
            {"timestamp": {"$gte": 1}},
            {"timestamp": {"$lte": 2}},
            {"metric_type": {"$in": ["overview", "conversion"]}},
            {"platform": {"$in": ["googleAds"]}},
        ]
    }
    assert matches_filter({"tenant_id": "tenant-a", "timestamp": 1, "metric_type": "overview", "platform": "googleAds"}, where)
    assert not matches_filter({"tenant_id": "tenant-a", "timestamp": 3, "metric_type": "overview", "platform": "googleAds"}, where)


def test_delete_by_tenant_then_reinsert_counts_only_latest() -> None:
    store = InMemoryVectorStore()
    start = date(2025, 3, 8)
    store.upsert("tenant-a", [_chunk("tenant-a", f"old-{i}", start) for i in range(5)], [SAME_VECTOR] * 5)
    store.upsert("tenant-b", [_chunk("tenant-b", "b-1", start)], [SAME_VECTOR])

    store.delete_by_tenant("tenant-a")
    store.upsert("tenant-a", [_chunk("tenant-a", f"new-{i}", start) for i in range(3)], [SAME_VECTOR] * 3)

    assert store.count("tenant-a") == 3
    assert store.count("tenant-b") == 1


def test_delete_older_than_uses_period_start() -> None:
    store = InMemoryVectorStore()
    store.upsert(
        "tenant-a",
        [_chunk("tenant-a", "old", date(2024, 11, 1)), _chunk("tenant-a", "new", date(2025, 3, 1))],
        [SAME_VECTOR, SAME_VECTOR],
    )

    store.delete_older_than("tenant-a", day_start_ms(date(2025, 1, 1)))

    assert [item.chunk.chunk_id for item in store.query(SAME_VECTOR, "tenant-a")] == ["new"]


def test_has_recent_data_checks_index_time() -> None:
    store = InMemoryVectorStore()
    store.upsert(
        "tenant-a",
        [_chunk("tenant-a", "a-1", date(2025, 3, 8), created_at=NOW - timedelta(hours=30))],
        [SAME_VECTOR],
    )

    assert store.has_recent_data("tenant-a", 48, now=NOW) is True
    assert store.has_recent_data("tenant-a", 24, now=NOW) is False
    assert store.has_recent_data("tenant-b", 48, now=NOW) is False


def test_user_memories_are_partitioned_by_user() -> None:
    store = InMemoryVectorStore()
    for user_id, text in (("u1", "Focus on ROAS"), ("u2", "Show spend first")):
        store.store_user_memory(
            UserMemory(
                memory_id=f"m-{user_id}",
                user_id=user_id,
                project_id="tenant-a",
                timestamp=to_ms(NOW),
                memory_type=MemoryType.PREFERENCE,
                original_query=text,
                correction=text,
            ),
            SAME_VECTOR,
        )

    memories = store.retrieve_user_memories(SAME_VECTOR, "u1", top_k=3, min_score=0.7)
    unrelated = store.retrieve_user_memories([0.0, 1.0, 0.0], "u1", min_score=0.7)

    assert [memory.correction for memory in memories] == ["Focus on ROAS"]
    assert unrelated == []


def test_record_flattening_has_no_none_values() -> None:
    chunk = _chunk("tenant-a", "a-1", date(2025, 3, 8), platform="")
    record = chunk_to_record(chunk)

    assert None not in record.values()
    assert record["timestamp"] == day_start_ms(date(2025, 3, 8))
    restored = record_to_chunk("a-1", chunk.text, record)
    assert restored.metadata.platform is None
    assert restored.metadata.metrics_snapshot == {"sessions": 10}
    assert restored.metadata.start_date == date(2025, 3, 8)


class FakeCollection:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.query_response: dict = {"ids": [[]], "documents": [[]], "metadatas": [[]], "distances": [[]]}

    def upsert(self, **kwargs) -> None:
        self.calls.append(("upsert", kwargs))

    def query(self, **kwargs) -> dict:
        self.calls.append(("query", kwargs))
        return self.query_response

    def get(self, **kwargs) -> dict:
        self.calls.append(("get", kwargs))
        return {"ids": ["x"]}

    def delete(self, **kwargs) -> None:
        self.calls.append(("delete", kwargs))


class FakeClient:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    def get_or_create_collection(self, name: str, metadata: dict) -> FakeCollection:
        assert metadata == {"hnsw:space": "cosine"}
        return self.collections.setdefault(name, FakeCollection())


def test_chroma_adapter_scopes_queries_and_converts_distances() -> None:
    client = FakeClient()
    store = ChromaVectorStore(client)
    analytics = client.collections["hotel_analytics"]
    kept = _chunk("tenant-a", "a-1", date(2025, 3, 8))
    dropped = _chunk("tenant-a", "a-2", date(2025, 3, 8))
    analytics.query_response = {
        "ids": [["a-1", "a-2"]],
        "documents": [[kept.text, dropped.text]],
        "metadatas": [[chunk_to_record(kept), chunk_to_record(dropped)]],
        "distances": [[0.1, 0.7]],
    }

    results = store.query(SAME_VECTOR, "tenant-a", top_k=5, min_score=0.6)

    name, kwargs = analytics.calls[-1]
    assert name == "query"
    assert kwargs["where"] == {"tenant_id": {"$eq": "tenant-a"}}
    assert kwargs["n_results"] == 5
    assert [item.chunk.chunk_id for item in results] == ["a-1"]
    assert results[0].score == pytest.approx(0.9)


def test_chroma_adapter_wraps_client_errors() -> None:
    class BrokenCollection(FakeCollection):
        def delete(self, **kwargs) -> None:
            raise RuntimeError("connection reset")

    class BrokenClient(FakeClient):
        def get_or_create_collection(self, name: str, metadata: dict) -> FakeCollection:
            return self.collections.setdefault(name, BrokenCollection())

    store = ChromaVectorStore(BrokenClient())

    with pytest.raises(VectorStoreError, match="connection reset"):
        store.delete_by_tenant("tenant-a")
    assert store.has_recent_data("tenant-a", 24, now=NOW) is True
