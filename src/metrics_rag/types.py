"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class MetricType(str, Enum):
    OVERVIEW = "overview"
    CONVERSION = "conversion"
    CHANNEL = "channel"
    PLATFORM = "platform"
    INSIGHT = "insight"
    CAMPAIGN = "campaign"


class MemoryType(str, Enum):
    CORRECTION = "correction"
    PREFERENCE = "preference"
    INSTRUCTION = "instruction"


GENERAL_PLATFORM = "general"


@dataclass(frozen=True, slots=True)
class DateRange:
    """Closed calendar interval with a human-readable label."""

    start_date: date
    end_date: date
    label: str = ""

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date} is after end_date {self.end_date}"
            )


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    """Metadata stored alongside every indexed chunk.

    `tenant_id` is the partition key. `metrics_snapshot` is the facet payload the
    chunk was rendered from; `typed_snapshot()` re-validates it into its model.
    """

    tenant_id: str
    metric_type: str
    start_date: date
    end_date: date
    date_range_label: str
    category: str
    text_content: str
    metrics_snapshot: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    platform: str | None = None
    is_fallback_data: bool = False
    fallback_period: str | None = None

    def typed_snapshot(self) -> BaseModel:
        from metrics_rag.snapshot import load_snapshot

        return load_snapshot(self.metric_type, self.platform, self.metrics_snapshot)


@dataclass(frozen=True, slots=True)
class MetricChunk:
    chunk_id: str
    text: str
    metadata: ChunkMetadata


@dataclass(slots=True)
class ScoredChunk:
    """A retrieval result with its normalized similarity score in [0, 1]."""

    chunk: MetricChunk
    score: float
    rank: int = 0


@dataclass(slots=True)
class Timeframe:
    start_time: int
    end_time: int
    start_date: date
    end_date: date
    label: str
    is_historical: bool
    kind: str = "default"


@dataclass(slots=True)
class ParsedIntent:
    timeframe: Timeframe
    platforms: list[str]
    metric_types: list[str]
    original_query: str
    confidence: float


@dataclass(frozen=True, slots=True)
class UserMemory:
    memory_id: str
    user_id: str
    project_id: str
    timestamp: int
    memory_type: MemoryType
    original_query: str
    correction: str


@dataclass(frozen=True, slots=True)
class Tenant:
    tenant_id: str
    name: str = ""


@dataclass(slots=True)
class SyncStatus:
    is_running: bool = False
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    tenants_processed: int = 0
    vectors_upserted: int = 0


@dataclass(slots=True)
class ToolCall:
    name: str
    arguments: dict[str, Any]
    call_id: str


@dataclass(slots=True)
class ToolResult:
    content: str
    call_id: str
    tool_name: str
    is_error: bool = False


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float


@dataclass(slots=True)
class QueryFilters:
    """Optional filters ANDed with the mandatory tenant filter."""

    time_range: tuple[int, int] | None = None
    metric_types: list[str] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)
