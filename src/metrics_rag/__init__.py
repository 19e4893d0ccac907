"""Asynchronous RAG over per-project marketing metrics."""

from .config import (
    AgentConfig,
    ChunkingConfig,
    EmbeddingConfig,
    RetrievalConfig,
    Settings,
    SyncConfig,
    VectorStoreConfig,
)

__all__ = [
    "AgentConfig",
    "ChunkingConfig",
    "EmbeddingConfig",
    "RetrievalConfig",
    "Settings",
    "SyncConfig",
    "VectorStoreConfig",
]
