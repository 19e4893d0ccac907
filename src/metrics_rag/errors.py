"""Exception taxonomy shared across the ingest, retrieval and agent layers."""

from __future__ import annotations


class MetricsRagError(Exception):
    """Base class for all errors raised by this package."""


class EmbeddingError(MetricsRagError):
    """Embedding request failed.

    `retryable` is False for input and validation failures, which are never
    retried. `status_code` carries the provider's HTTP-style status when known.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class EmbeddingDimensionError(EmbeddingError):
    """Provider returned vectors of an unexpected width."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Expected {expected} dimensions, got {actual}",
            retryable=False,
        )
        self.expected = expected
        self.actual = actual


class VectorStoreError(MetricsRagError):
    """Query, upsert or delete against the vector store failed."""


class ToolExecutionError(MetricsRagError):
    """A single agent tool call failed."""

    def __init__(self, tool_name: str, cause: BaseException) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {cause}")
        self.tool_name = tool_name
        self.cause = cause

    def to_payload(self) -> dict[str, str]:
        return {
            "error": str(self.cause) or self.cause.__class__.__name__,
            "tool": self.tool_name,
            "type": self.cause.__class__.__name__,
        }


class SyncWindowError(MetricsRagError):
    """Syncing one date window of one tenant failed."""

    def __init__(self, tenant_id: str, window_label: str, cause: BaseException) -> None:
        super().__init__(f"Sync of '{window_label}' for tenant {tenant_id} failed: {cause}")
        self.tenant_id = tenant_id
        self.window_label = window_label
        self.cause = cause
