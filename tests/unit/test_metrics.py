"""
Unit tests for the Prometheus metrics.
"""

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from snapsync.monitoring.metrics import MetricsCollector


class TestPollerMetrics:
    """Test poll cycle metrics."""

    def test_record_cycle(self, metrics, registry):
        metrics.poller.record_cycle("success", 0.2, emitted={"INSERT": 3, "DELETE": 0}, send_failures={"INSERT": 1})

        assert registry.get_sample_value("snapsync_poll_cycles_total", {"status": "success"}) == 1.0
        assert registry.get_sample_value("snapsync_intents_emitted_total", {"operation": "INSERT"}) == 3.0
        assert registry.get_sample_value("snapsync_intents_emitted_total", {"operation": "DELETE"}) is None
        assert registry.get_sample_value("snapsync_queue_send_failures_total", {"operation": "INSERT"}) == 1.0
        assert registry.get_sample_value("snapsync_poll_duration_seconds_count") == 1.0


class TestConsumerMetrics:
    """Test apply metrics."""

    def test_record_apply(self, metrics, registry):
        metrics.consumer.record_apply("UPDATE", "applied", 0.01)
        metrics.consumer.record_apply("UPDATE", "applied", 0.02)

        assert registry.get_sample_value(
            "snapsync_applies_total", {"operation": "UPDATE", "outcome": "applied"}
        ) == 2.0

    def test_record_retry(self, metrics, registry):
        metrics.consumer.record_retry("INSERT", 20)

        assert registry.get_sample_value("snapsync_retries_scheduled_total", {"operation": "INSERT"}) == 1.0
        assert registry.get_sample_value("snapsync_retry_delay_seconds_sum") == 20.0

    def test_record_permanent_failure(self, metrics, registry):
        metrics.consumer.record_permanent_failure("DELETE", "exhausted")

        assert registry.get_sample_value(
            "snapsync_permanent_failures_total", {"operation": "DELETE", "reason": "exhausted"}
        ) == 1.0


class TestReconciliationMetrics:
    """Test drift metrics."""

    def test_gauges_replace_previous_values(self, metrics, registry):
        """Test that drift gauges reflect the latest run."""
        metrics.reconciliation.record_reconciliation_run("success", 1.0, issues={"data_mismatch": 4}, accuracy_percentage=96.0)
        metrics.reconciliation.record_reconciliation_run("success", 1.0, issues={"data_mismatch": 0}, accuracy_percentage=100.0)

        assert registry.get_sample_value("snapsync_current_drift_rows", {"issue": "data_mismatch"}) == 0.0
        assert registry.get_sample_value("snapsync_data_accuracy_percentage") == 100.0
        assert registry.get_sample_value("snapsync_reconciliation_runs_total", {"status": "success"}) == 2.0

    def test_failure_leaves_gauges(self, metrics, registry):
        metrics.reconciliation.record_reconciliation_run("success", 1.0, issues={"missing_in_target": 2}, accuracy_percentage=80.0)
        metrics.reconciliation.record_reconciliation_run("failure", 0.5)

        assert registry.get_sample_value("snapsync_current_drift_rows", {"issue": "missing_in_target"}) == 2.0
        assert registry.get_sample_value("snapsync_data_accuracy_percentage") == 80.0


class TestMetricsCollector:
    """Test the collector and its HTTP server."""

    def test_pipeline_info(self, metrics, registry):
        assert registry.get_sample_value(
            "snapsync_pipeline_info", {"version": "1.0.0", "detection": "polling", "target": "postgresql-jsonb"}
        ) == 1.0

    def test_separate_registries_do_not_collide(self):
        """Test that two collectors can coexist on isolated registries."""
        MetricsCollector(registry=CollectorRegistry())
        MetricsCollector(registry=CollectorRegistry())

    def test_start_server(self, metrics):
        with patch("snapsync.monitoring.metrics.start_http_server") as server:
            metrics.start_server()

        server.assert_called_once_with(0, registry=metrics.registry)

    def test_start_server_port_in_use(self, metrics):
        """Test that an already bound port is tolerated."""
        with patch("snapsync.monitoring.metrics.start_http_server", side_effect=OSError("Address already in use")):
            metrics.start_server()

    def test_start_server_other_error(self, metrics):
        with patch("snapsync.monitoring.metrics.start_http_server", side_effect=OSError("Permission denied")):
            with pytest.raises(OSError):
                metrics.start_server()
