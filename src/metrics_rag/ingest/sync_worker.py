"""Background write path: metrics → chunks → embeddings → vector store."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any, Protocol

from metrics_rag.config import SyncConfig
from metrics_rag.dates import months_ago_bounds, to_ms, trailing_days
from metrics_rag.errors import SyncWindowError
from metrics_rag.ingest.chunker import MetricsChunker
from metrics_rag.ingest.embedder import EmbeddingClient
from metrics_rag.obs.logging import get_logger
from metrics_rag.obs.tracing import Timer
from metrics_rag.retrieval.vector_store import VectorStore
from metrics_rag.snapshot import AggregatedMetrics
from metrics_rag.types import DateRange, SyncStatus, Tenant

logger = get_logger(__name__)


class TenantDirectory(Protocol):
    def list_active_tenants(self) -> list[Tenant]:
        """Tenants with at least one connected data source."""


class MetricsSource(Protocol):
    def get_project_metrics(
        self, tenant_id: str, start_date: date, end_date: date
    ) -> AggregatedMetrics | Mapping[str, Any]:
        """Aggregated metrics snapshot for one tenant and window."""


def sync_windows(today: date) -> list[DateRange]:
    """Rolling windows indexed on every run.

    The current week (seven days ending yesterday), the four weeks before it,
    and the three previous calendar months.
    """

    start, end = trailing_days(today, 7)
    windows = [DateRange(start, end, "Current Week")]
    for offset in range(1, 5):
        shift = timedelta(days=7 * offset)
        windows.append(DateRange(start - shift, end - shift, f"Week -{offset}"))
    for months, label in ((1, "Previous Month"), (2, "Two Months Ago"), (3, "Three Months Ago")):
        month_start, month_end = months_ago_bounds(today, months)
        windows.append(DateRange(month_start, month_end, label))
    return windows


class SyncWorker:
    """Indexes every active tenant over the rolling sync windows.

    `run_sync` never overlaps with itself: a call made while a run is in
    progress returns the current status immediately. Failures of one window or
    one tenant are logged and skipped without aborting the run.
    """

    def __init__(
        self,
        tenants: TenantDirectory,
        metrics: MetricsSource,
        chunker: MetricsChunker,
        embedder: EmbeddingClient,
        store: VectorStore,
        config: SyncConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.tenants = tenants
        self.metrics = metrics
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.config = config or SyncConfig()
        self._sleep = sleep
        self._clock = clock
        self._run_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._status = SyncStatus()

    def get_status(self) -> SyncStatus:
        with self._status_lock:
            return replace(self._status)

    def trigger_manual_sync(self) -> SyncStatus:
        logger.info("[SyncWorker] Manual sync requested")
        return self.run_sync()

    def run_sync(self) -> SyncStatus:
        if not self._run_lock.acquire(blocking=False):
            logger.warning("[SyncWorker] Sync already in progress, skipping")
            return self.get_status()

        try:
            with self._status_lock:
                self._status.is_running = True
                self._status.last_run_at = self._clock()
                self._status.tenants_processed = 0
                self._status.vectors_upserted = 0

            with Timer() as timer:
                try:
                    tenants = self.tenants.list_active_tenants()
                    logger.info("[SyncWorker] Found %d active tenants to sync", len(tenants))
                    self._run_batches(tenants)
                except Exception as exc:
                    logger.error("[SyncWorker] Sync failed: %s", exc)
                    with self._status_lock:
                        self._status.last_error = str(exc)
                else:
                    with self._status_lock:
                        self._status.last_success_at = self._clock()
                        self._status.last_error = None

            status = self.get_status()
            logger.info(
                "[SyncWorker] Sync finished: tenants=%d vectors=%d duration_ms=%.0f",
                status.tenants_processed,
                status.vectors_upserted,
                timer.elapsed_ms,
            )
        finally:
            with self._status_lock:
                self._status.is_running = False
            self._run_lock.release()
        return self.get_status()

    def _run_batches(self, tenants: list[Tenant]) -> None:
        size = self.config.tenant_batch_size
        for start in range(0, len(tenants), size):
            batch = tenants[start : start + size]
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = {executor.submit(self.sync_tenant, tenant): tenant for tenant in batch}
                for future in as_completed(futures):
                    tenant = futures[future]
                    try:
                        future.result()
                    except Exception as exc:
                        logger.error("[SyncWorker] Failed to sync tenant %s: %s", tenant.tenant_id, exc)
            if start + size < len(tenants) and self.config.inter_batch_delay > 0:
                self._sleep(self.config.inter_batch_delay)

    def sync_tenant(self, tenant: Tenant) -> int:
        """Index every sync window for one tenant; returns chunks upserted."""

        logger.info("[SyncWorker] Processing %s (%s)", tenant.name or tenant.tenant_id, tenant.tenant_id)
        now = self._clock()
        windows = sync_windows(now.date())
        upserted = 0
        for index, window in enumerate(windows):
            if index > 0 and self.config.inter_window_delay > 0:
                self._sleep(self.config.inter_window_delay)
            try:
                written = self.sync_window(tenant.tenant_id, window, now)
            except SyncWindowError as exc:
                logger.error("[SyncWorker] %s", exc)
                continue
            upserted += written
            with self._status_lock:
                self._status.vectors_upserted += written

        with self._status_lock:
            self._status.tenants_processed += 1
        return upserted

    def sync_window(self, tenant_id: str, window: DateRange, now: datetime | None = None) -> int:
        try:
            raw = self.metrics.get_project_metrics(tenant_id, window.start_date, window.end_date)
            metrics = raw if isinstance(raw, AggregatedMetrics) else AggregatedMetrics.model_validate(raw)
            if not metrics.has_valid_metrics():
                logger.info("[SyncWorker] No data for %s (tenant %s)", window.label, tenant_id)
                return 0

            chunks = self.chunker.chunk(metrics, tenant_id, window, now=now or self._clock())
            if not chunks:
                return 0
            vectors = self.embedder.embed_batch([chunk.text for chunk in chunks])
            written = self.store.upsert(tenant_id, chunks, vectors)
        except Exception as exc:
            raise SyncWindowError(tenant_id, window.label, exc) from exc

        logger.info("[SyncWorker] Synced %d chunks for %s (tenant %s)", written, window.label, tenant_id)
        return written

    def reindex_tenant(self, tenant: Tenant) -> int:
        """Drop everything indexed for a tenant, then sync it from scratch."""

        self.store.delete_by_tenant(tenant.tenant_id)
        return self.sync_tenant(tenant)

    def cleanup_expired(self, tenant_id: str, now: datetime | None = None) -> None:
        cutoff = (now or self._clock()) - timedelta(days=self.chunker.config.ttl_days)
        self.store.delete_older_than(tenant_id, to_ms(cutoff))
        logger.info("[SyncWorker] Removed chunks older than %s for tenant %s", cutoff.date(), tenant_id)


class SyncScheduler:
    """Runs `SyncWorker.run_sync` on a fixed interval in one daemon thread."""

    def __init__(
        self,
        worker: SyncWorker,
        interval_seconds: float | None = None,
        initial_delay_seconds: float | None = None,
    ) -> None:
        self.worker = worker
        self.interval_seconds = (
            worker.config.interval_seconds if interval_seconds is None else interval_seconds
        )
        self.initial_delay_seconds = (
            worker.config.initial_delay_seconds
            if initial_delay_seconds is None
            else initial_delay_seconds
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="metrics-sync", daemon=True)
        self._thread.start()
        logger.info(
            "[SyncWorker] Scheduler started: every %.0fs after %.0fs",
            self.interval_seconds,
            self.initial_delay_seconds,
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        if self._stop.wait(self.initial_delay_seconds):
            return
        while True:
            try:
                self.worker.run_sync()
            except Exception as exc:
                logger.error("[SyncWorker] Scheduled run raised: %s", exc)
            if self._stop.wait(self.interval_seconds):
                return
