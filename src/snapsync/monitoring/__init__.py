"""
Monitoring Module for snapsync

This module provides observability components for the sync pipeline:
- Custom Prometheus metrics
- Alert rule definitions

Usage:
    from snapsync.monitoring import MetricsCollector, AlertRuleGenerator

    metrics = MetricsCollector(port=9090)
    metrics.reconciliation.record_reconciliation_run(
        status="success",
        duration_seconds=1.2,
        issues={"missing_in_target": 3}
    )

    rules = AlertRuleGenerator().generate_alert_rules()
"""

from snapsync.monitoring.metrics import MetricsCollector
from snapsync.monitoring.alerts import AlertRuleGenerator

__all__ = [
    "MetricsCollector",
    "AlertRuleGenerator",
]
