"""Embedding abstractions, deterministic baseline and the batching client."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from hashlib import blake2b
from math import sqrt
from typing import Any, Protocol

from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from metrics_rag.config import EmbeddingConfig
from metrics_rag.errors import EmbeddingDimensionError, EmbeddingError
from metrics_rag.obs.logging import get_logger

logger = get_logger(__name__)


class EmbeddingProvider(Protocol):
    """Anything exposing LangChain's `Embeddings.embed_documents` signature."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        ...


class Embedder(ABC):
    """Embedder interface used by ingest and retrieval components."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local runs without an API key and for deterministic tests.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class EmbeddingClient:
    """Batches texts to an embedding provider with retry and output validation.

    Rate-limited attempts (HTTP 429) back off exponentially from
    `retry_base_delay`; other provider failures retry after a flat
    `retry_base_delay`. Both share the `max_retries` attempt budget. Empty input,
    length mismatches and wrong vector widths fail immediately.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self.config = config or EmbeddingConfig()
        self._sleep = sleep

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        for index, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise EmbeddingError(
                    f"Cannot embed empty text (index {index})", retryable=False
                )

        size = self.config.batch_size
        vectors: list[list[float]] = []
        batches = [list(texts[i : i + size]) for i in range(0, len(texts), size)]
        for number, batch in enumerate(batches):
            if number > 0 and self.config.inter_batch_delay > 0:
                self._sleep(self.config.inter_batch_delay)
            vectors.extend(self._embed_with_retry(batch))
            logger.debug(
                "[EmbeddingClient] Embedded batch %d/%d (%d texts)",
                number + 1,
                len(batches),
                len(batch),
            )
        return vectors

    # Compatibility with the `Embedder` interface so the client can stand in
    # wherever a plain embedder is expected.
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_batch(texts)

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)

    def _embed_with_retry(self, batch: list[str]) -> list[list[float]]:
        retryer = Retrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        return retryer(self._embed_once, batch)

    def _embed_once(self, batch: list[str]) -> list[list[float]]:
        try:
            vectors = self._provider.embed_documents(batch)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding request failed: {exc}", status_code=_status_code(exc)
            ) from exc

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedding response has {len(vectors)} vectors for {len(batch)} texts",
                retryable=False,
            )
        for vector in vectors:
            validate_embedding(vector, self.config.dimensions)
        return [list(vector) for vector in vectors]

    def _wait(self, retry_state: RetryCallState) -> float:
        base = self.config.retry_base_delay
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, EmbeddingError) and exc.is_rate_limited:
            return base * (2 ** (retry_state.attempt_number - 1))
        return base


def validate_embedding(vector: Sequence[float], expected: int) -> None:
    if len(vector) != expected:
        raise EmbeddingDimensionError(expected, len(vector))


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, EmbeddingError) and exc.retryable


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        value: Any = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None
