"""
Monitoring and metrics collection for the homepage fetcher.
"""

import logging
import time
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram
from prometheus_client import start_http_server


class MetricsCollector:
    """Prometheus metrics kept in a registry private to one run."""

    def __init__(self, enable_server: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_server = enable_server
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.jobs_total = Counter(
            'homefetch_jobs_total',
            'Domains processed, by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.fetch_duration_seconds = Histogram(
            'homefetch_fetch_duration_seconds',
            'Time spent fetching and storing one domain',
            registry=self.registry
        )
        self.bytes_stored_total = Counter(
            'homefetch_bytes_stored_total',
            'Compressed bytes written to the store',
            registry=self.registry
        )
        self.active_workers = Gauge(
            'homefetch_active_workers',
            'Workers currently processing a domain',
            registry=self.registry
        )

    def start_server(self):
        """Start the Prometheus metrics HTTP server if enabled."""
        if not self.enable_server:
            return

        start_http_server(self.prometheus_port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Read one sample from the registry; 0.0 when it has not been recorded yet."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0


class FetchMonitor:
    """High-level monitoring interface for the worker pool."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.logger = logging.getLogger(__name__)
        self.start_time = time.time()

    def record_outcome(self, outcome):
        """Record a finished job."""
        self.metrics.jobs_total.labels(outcome=outcome.kind.value).inc()

        if outcome.kind.value != 'skipped':
            self.metrics.fetch_duration_seconds.observe(outcome.duration)
        if outcome.size:
            self.metrics.bytes_stored_total.inc(outcome.size)

    def worker_busy(self):
        self.metrics.active_workers.inc()

    def worker_idle(self):
        self.metrics.active_workers.dec()

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        runtime = time.time() - self.start_time
        counts = {
            kind: int(self.metrics.get_value('homefetch_jobs_total', {'outcome': kind}))
            for kind in ('ok', 'failed', 'skipped')
        }
        processed = sum(counts.values())

        return {
            'runtime_seconds': runtime,
            'jobs': counts,
            'bytes_stored': int(self.metrics.get_value('homefetch_bytes_stored_total')),
            'domains_per_second': processed / runtime if runtime > 0 else 0,
        }


def initialize_monitoring(enable_server: bool = False, prometheus_port: int = 8000) -> FetchMonitor:
    """Create a monitor with its own metrics registry."""
    return FetchMonitor(MetricsCollector(enable_server, prometheus_port))
