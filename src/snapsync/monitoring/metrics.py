"""
Prometheus Metrics for snapsync

Custom metrics for the change detector, the sync consumer and the reconciler.
Metrics are exposed on port 9090 for Prometheus scraping by default.
"""

import logging
from typing import Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, Info, start_http_server

logger = logging.getLogger(__name__)


class PollerMetrics:
    """Prometheus metrics for change detection cycles."""

    def __init__(self, registry: CollectorRegistry):
        """Initialize poller metrics."""

        self.poll_cycles_total = Counter(
            'snapsync_poll_cycles_total',
            'Total number of change detection cycles',
            ['status'],
            registry=registry
        )

        self.poll_duration_seconds = Histogram(
            'snapsync_poll_duration_seconds',
            'Duration of change detection cycles in seconds',
            buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
            registry=registry
        )

        self.intents_emitted_total = Counter(
            'snapsync_intents_emitted_total',
            'Total sync intents queued by the change detector',
            ['operation'],
            registry=registry
        )

        self.queue_send_failures_total = Counter(
            'snapsync_queue_send_failures_total',
            'Total sync intents that could not be queued',
            ['operation'],
            registry=registry
        )

        logger.info("PollerMetrics initialized")

    def record_cycle(
        self,
        status: str,
        duration_seconds: float,
        emitted: Optional[Dict[str, int]] = None,
        send_failures: Optional[Dict[str, int]] = None
    ) -> None:
        """
        Record a change detection cycle.

        Args:
            status: Cycle status (success/failure)
            duration_seconds: Duration in seconds
            emitted: Intents queued per operation
            send_failures: Intents that failed to queue per operation
        """
        self.poll_cycles_total.labels(status=status).inc()
        self.poll_duration_seconds.observe(duration_seconds)

        for operation, count in (emitted or {}).items():
            if count:
                self.intents_emitted_total.labels(operation=operation).inc(count)

        for operation, count in (send_failures or {}).items():
            if count:
                self.queue_send_failures_total.labels(operation=operation).inc(count)


class ConsumerMetrics:
    """Prometheus metrics for intent application."""

    def __init__(self, registry: CollectorRegistry):
        """Initialize consumer metrics."""

        self.applies_total = Counter(
            'snapsync_applies_total',
            'Total apply attempts by outcome',
            ['operation', 'outcome'],
            registry=registry
        )

        self.apply_duration_seconds = Histogram(
            'snapsync_apply_duration_seconds',
            'Duration of apply attempts in seconds',
            ['operation'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5],
            registry=registry
        )

        self.retries_scheduled_total = Counter(
            'snapsync_retries_scheduled_total',
            'Total retries scheduled with backoff',
            ['operation'],
            registry=registry
        )

        self.retry_delay_seconds = Histogram(
            'snapsync_retry_delay_seconds',
            'Scheduled retry delays in seconds',
            buckets=[5, 10, 20, 40, 80, 160, 300],
            registry=registry
        )

        self.permanent_failures_total = Counter(
            'snapsync_permanent_failures_total',
            'Total intents dropped after permanent failure',
            ['operation', 'reason'],
            registry=registry
        )

        self.batches_processed_total = Counter(
            'snapsync_batches_processed_total',
            'Total message batches processed',
            registry=registry
        )

        logger.info("ConsumerMetrics initialized")

    def record_apply(self, operation: str, outcome: str, duration_seconds: float) -> None:
        """
        Record an apply attempt.

        Args:
            operation: INSERT/UPDATE/DELETE
            outcome: applied/retried/failed
            duration_seconds: Duration in seconds
        """
        self.applies_total.labels(operation=operation, outcome=outcome).inc()
        self.apply_duration_seconds.labels(operation=operation).observe(duration_seconds)

    def record_retry(self, operation: str, delay_seconds: float) -> None:
        """Record a scheduled retry."""
        self.retries_scheduled_total.labels(operation=operation).inc()
        self.retry_delay_seconds.observe(delay_seconds)

    def record_permanent_failure(self, operation: str, reason: str) -> None:
        """Record an intent dropped after permanent failure (exhausted/validation/malformed)."""
        self.permanent_failures_total.labels(operation=operation, reason=reason).inc()


class ReconciliationMetrics:
    """Prometheus metrics for reconciliation runs."""

    def __init__(self, registry: CollectorRegistry):
        """Initialize reconciliation metrics."""

        self.reconciliation_runs_total = Counter(
            'snapsync_reconciliation_runs_total',
            'Total number of reconciliation runs',
            ['status'],
            registry=registry
        )

        self.reconciliation_duration_seconds = Histogram(
            'snapsync_reconciliation_duration_seconds',
            'Duration of reconciliation runs in seconds',
            buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300],
            registry=registry
        )

        self.current_drift_rows = Gauge(
            'snapsync_current_drift_rows',
            'Out-of-sync records found by the last reconciliation',
            ['issue'],
            registry=registry
        )

        self.data_accuracy_percentage = Gauge(
            'snapsync_data_accuracy_percentage',
            'Data accuracy percentage (0-100)',
            registry=registry
        )

        logger.info("ReconciliationMetrics initialized")

    def record_reconciliation_run(
        self,
        status: str,
        duration_seconds: float,
        issues: Optional[Dict[str, int]] = None,
        accuracy_percentage: Optional[float] = None
    ) -> None:
        """
        Record a reconciliation run.

        Args:
            status: Run status (success/failure)
            duration_seconds: Duration in seconds
            issues: Out-of-sync count per issue type
            accuracy_percentage: Match percentage of source rows
        """
        self.reconciliation_runs_total.labels(status=status).inc()
        self.reconciliation_duration_seconds.observe(duration_seconds)

        if issues is not None:
            for issue, count in issues.items():
                self.current_drift_rows.labels(issue=issue).set(count)

        if accuracy_percentage is not None:
            self.data_accuracy_percentage.set(accuracy_percentage)

        logger.debug(
            f"Recorded reconciliation metrics: status={status}, "
            f"duration={duration_seconds}s, issues={issues}"
        )


class MetricsCollector:
    """
    Main metrics collector for snapsync.

    Combines all metric categories and provides unified interface.
    """

    def __init__(self, port: int = 9090, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics collector.

        Args:
            port: Port for Prometheus metrics server
            registry: Prometheus registry (default registry if not provided)
        """
        self.port = port
        self.registry = registry if registry is not None else REGISTRY
        self.poller = PollerMetrics(self.registry)
        self.consumer = ConsumerMetrics(self.registry)
        self.reconciliation = ReconciliationMetrics(self.registry)

        self.pipeline_info = Info('snapsync_pipeline', 'snapsync pipeline information', registry=self.registry)
        self.pipeline_info.info({
            'version': '1.0.0',
            'detection': 'polling',
            'target': 'postgresql-jsonb'
        })

        logger.info(f"MetricsCollector initialized on port {port}")

    def start_server(self) -> None:
        """Start Prometheus metrics HTTP server."""
        try:
            start_http_server(self.port, registry=self.registry)
            logger.info(f"Metrics server started on port {self.port}")
        except OSError as e:
            if "Address already in use" in str(e):
                logger.warning(f"Metrics server already running on port {self.port}")
            else:
                raise
