"""
Prometheus metrics collection.

In-memory counters only; scraping and storage are left to Prometheus.
"""

from typing import List, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Metrics for the paste engine.

    Each collector registers into its own registry unless one is passed in,
    so several services (or tests) can live in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        # Service info
        self.service_info = Info(
            "pastevault_service",
            "pastevault service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "pastevault",
        })

        # Paste lifecycle
        self.pastes_created_total = Counter(
            "pastevault_pastes_created_total",
            "Total pastes created",
            ["encrypted", "burn_after_reading"],
            registry=self.registry,
        )

        self.paste_size_bytes = Histogram(
            "pastevault_paste_size_bytes",
            "Size of submitted paste content in bytes",
            buckets=[64, 256, 1024, 4096, 16384, 65536, 262144, 1048576],
            registry=self.registry,
        )

        self.reads_total = Counter(
            "pastevault_reads_total",
            "Paste reads by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.deletions_total = Counter(
            "pastevault_deletions_total",
            "Deleted pastes by cause",
            ["cause"],
            registry=self.registry,
        )

        # Purge sweeper
        self.purge_cycles_total = Counter(
            "pastevault_purge_cycles_total",
            "Purge cycles by status",
            ["status"],
            registry=self.registry,
        )

        # Render cache
        self.cache_hits_total = Counter(
            "pastevault_render_cache_hits_total",
            "Render cache hits",
            registry=self.registry,
        )

        self.cache_misses_total = Counter(
            "pastevault_render_cache_misses_total",
            "Render cache misses",
            registry=self.registry,
        )

        self.cache_entries = Gauge(
            "pastevault_render_cache_entries",
            "Entries currently held by the render cache",
            registry=self.registry,
        )

        # Crypto
        self.kdf_duration = Histogram(
            "pastevault_kdf_duration_seconds",
            "Password key derivation time in seconds",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=self.registry,
        )

        logger.debug("Metrics collector initialized")

    def record_created(self, encrypted: bool, burn_after_reading: bool, size_bytes: int) -> None:
        self.pastes_created_total.labels(
            encrypted=str(encrypted).lower(),
            burn_after_reading=str(burn_after_reading).lower(),
        ).inc()
        self.paste_size_bytes.observe(size_bytes)

    def record_read(self, outcome: str) -> None:
        """Outcome is one of ok, not_found, password_required, forbidden, error."""
        self.reads_total.labels(outcome=outcome).inc()

    def record_deletion(self, cause: str, count: int = 1) -> None:
        """Cause is one of owner, burn, expired, purge."""
        if count > 0:
            self.deletions_total.labels(cause=cause).inc(count)

    def record_purge_cycle(self, success: bool) -> None:
        self.purge_cycles_total.labels(status="success" if success else "error").inc()

    def record_purged(self, ids: List[int]) -> None:
        self.record_deletion("purge", len(ids))

    def record_cache_hit(self) -> None:
        self.cache_hits_total.inc()

    def record_cache_miss(self) -> None:
        self.cache_misses_total.inc()

    def set_cache_size(self, size: int) -> None:
        self.cache_entries.set(size)

    def record_kdf(self, duration_seconds: float) -> None:
        self.kdf_duration.observe(duration_seconds)
