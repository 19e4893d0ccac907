"""Configuration models for the metrics RAG system."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingConfig(BaseModel):
    """Configures embedding batching, retry budget and expected vector width."""

    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, ge=1)
    batch_size: int = Field(default=100, ge=1, le=2048)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    inter_batch_delay: float = Field(default=0.2, ge=0.0)


class ChunkingConfig(BaseModel):
    """Configures metric-to-text chunk rendering."""

    ttl_days: int = Field(default=90, ge=1)
    currency_symbol: str = "₹"
    max_text_length: int = Field(default=8000, ge=200)


class VectorStoreConfig(BaseModel):
    """Configures collections and search defaults of the vector store."""

    analytics_collection: str = "hotel_analytics"
    memory_collection: str = "user_memory"
    default_top_k: int = Field(default=10, ge=1)
    default_min_score: float = Field(default=0.60, ge=0.0, le=1.0)
    upsert_batch_size: int = Field(default=100, ge=1)
    count_limit: int = Field(default=10_000, ge=1)


class RetrievalConfig(BaseModel):
    """Configures the read path and its widened-window fallback."""

    top_k: int = Field(default=10, ge=1)
    min_score: float = Field(default=0.60, ge=0.0, le=1.0)
    fallback_window_days: int = Field(default=30, ge=1)
    fallback_min_score: float = Field(default=0.50, ge=0.0, le=1.0)
    memory_top_k: int = Field(default=3, ge=1)
    memory_min_score: float = Field(default=0.70, ge=0.0, le=1.0)
    freshness_hours: int = Field(default=24, ge=1)


class SyncConfig(BaseModel):
    """Configures the background sync worker and its scheduler."""

    tenant_batch_size: int = Field(default=5, ge=1)
    inter_batch_delay: float = Field(default=2.0, ge=0.0)
    inter_window_delay: float = Field(default=0.5, ge=0.0)
    interval_seconds: float = Field(default=3600.0, gt=0.0)
    initial_delay_seconds: float = Field(default=30.0, ge=0.0)


class AgentConfig(BaseModel):
    """Configures agent execution and latency targets."""

    max_iterations: int = Field(default=5, ge=1)
    max_tool_workers: int = Field(default=4, ge=1)
    default_window_days: int = Field(default=7, ge=1)
    target_latency_seconds: float = Field(default=8.0, gt=0.0)


class Settings(BaseSettings):
    """Process-level settings loaded from the environment or an optional `.env`."""

    env: Literal["dev", "prod"] = "dev"
    log_level: str | None = None

    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o"
    openai_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = Field(default=1536, ge=1)

    chroma_persist_dir: Path | None = None

    sync_enabled: bool = False
    sync_interval_seconds: float = Field(default=3600.0, gt=0.0)
    sync_initial_delay_seconds: float = Field(default=30.0, ge=0.0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _normalize_log_level(self) -> "Settings":
        if self.log_level is not None:
            self.log_level = self.log_level.upper()
        return self

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            model=self.embedding_model,
            dimensions=self.embedding_dimensions,
        )

    def sync_config(self) -> SyncConfig:
        return SyncConfig(
            interval_seconds=self.sync_interval_seconds,
            initial_delay_seconds=self.sync_initial_delay_seconds,
        )
