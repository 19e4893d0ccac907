"""Start-up wiring: every component is built once and passed by reference."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from metrics_rag.agent.assistant import AnalyticsAssistant
from metrics_rag.agent.registry import ToolRegistry, TraceCollector
from metrics_rag.agent.runtime import AgentToolRuntime
from metrics_rag.agent.tools import PlatformFetcher, register_builtin_tools
from metrics_rag.config import (
    AgentConfig,
    ChunkingConfig,
    RetrievalConfig,
    Settings,
    VectorStoreConfig,
)
from metrics_rag.ingest.chunker import MetricsChunker
from metrics_rag.ingest.embedder import EmbeddingClient, EmbeddingProvider, HashingEmbedder
from metrics_rag.ingest.sync_worker import MetricsSource, SyncScheduler, SyncWorker, TenantDirectory
from metrics_rag.obs.logging import configure_logging, get_logger
from metrics_rag.retrieval.intent import IntentParser
from metrics_rag.retrieval.orchestrator import RetrievalOrchestrator
from metrics_rag.retrieval.vector_store import ChromaVectorStore, VectorStore

logger = get_logger(__name__)


@dataclass(slots=True)
class Services:
    settings: Settings
    embedder: EmbeddingClient
    store: VectorStore
    intent_parser: IntentParser
    chunker: MetricsChunker
    orchestrator: RetrievalOrchestrator
    registry: ToolRegistry
    tool_traces: TraceCollector
    sync_worker: SyncWorker
    scheduler: SyncScheduler | None
    runtime: AgentToolRuntime | None
    assistant: AnalyticsAssistant | None

    def start(self) -> None:
        if self.scheduler is not None:
            self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()


def _create_llm(settings: Settings) -> Any:
    if settings.openai_api_key is None:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=settings.openai_model,
        temperature=settings.openai_temperature,
        api_key=settings.openai_api_key,
    )


def _create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    if settings.openai_api_key is None:
        logger.warning("OPENAI_API_KEY not set; using deterministic hashing embeddings")
        return HashingEmbedder(dimension=settings.embedding_dimensions)

    from langchain_openai import OpenAIEmbeddings

    # Retries are owned by EmbeddingClient.
    return OpenAIEmbeddings(
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        api_key=settings.openai_api_key,
        max_retries=0,
    )


def _create_chroma_client(settings: Settings) -> Any:
    import chromadb

    if settings.chroma_persist_dir is None:
        return chromadb.EphemeralClient()
    settings.chroma_persist_dir.mkdir(parents=True, exist_ok=True)
    return chromadb.PersistentClient(path=str(settings.chroma_persist_dir))


def build_services(
    settings: Settings,
    *,
    tenants: TenantDirectory,
    metrics: MetricsSource,
    platform_fetchers: Mapping[str, PlatformFetcher] | None = None,
    places_fetcher: Callable[[str], Mapping[str, Any]] | None = None,
    llm: Any | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    store: VectorStore | None = None,
) -> Services:
    """Construct the whole subsystem from settings and external collaborators."""

    configure_logging(env=settings.env, level=settings.log_level)

    embedder = EmbeddingClient(
        embedding_provider or _create_embedding_provider(settings),
        settings.embedding_config(),
    )
    vector_store = store or ChromaVectorStore(_create_chroma_client(settings), VectorStoreConfig())
    intent_parser = IntentParser()
    chunker = MetricsChunker(ChunkingConfig())
    orchestrator = RetrievalOrchestrator(embedder, vector_store, intent_parser, RetrievalConfig())

    registry = ToolRegistry()
    tool_traces = TraceCollector()
    registry.set_observer(tool_traces)
    register_builtin_tools(
        registry,
        orchestrator=orchestrator,
        intent_parser=intent_parser,
        platform_fetchers=platform_fetchers,
        places_fetcher=places_fetcher,
    )

    sync_worker = SyncWorker(
        tenants, metrics, chunker, embedder, vector_store, settings.sync_config()
    )
    scheduler = SyncScheduler(sync_worker) if settings.sync_enabled else None

    chat_model = llm if llm is not None else _create_llm(settings)
    runtime = AgentToolRuntime(chat_model, registry, AgentConfig()) if chat_model is not None else None
    assistant = AnalyticsAssistant(runtime, orchestrator) if runtime is not None else None
    if runtime is None:
        logger.warning("No chat model configured; the assistant is disabled")

    return Services(
        settings=settings,
        embedder=embedder,
        store=vector_store,
        intent_parser=intent_parser,
        chunker=chunker,
        orchestrator=orchestrator,
        registry=registry,
        tool_traces=tool_traces,
        sync_worker=sync_worker,
        scheduler=scheduler,
        runtime=runtime,
        assistant=assistant,
    )
