"""
Alert Rule Generator for Prometheus AlertManager

Generates alert rule definitions for snapsync monitoring.
Rules cover change detection health, apply failures, retries and drift.
"""

import logging
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)


class AlertRuleGenerator:
    """Generates Prometheus AlertManager alert rules."""

    def __init__(self, poll_interval_seconds: float = 5.0):
        """
        Initialize alert rule generator.

        Args:
            poll_interval_seconds: Configured poll interval, used to size staleness windows
        """
        self.poll_interval_seconds = poll_interval_seconds
        logger.info("AlertRuleGenerator initialized")

    def generate_alert_rules(self) -> Dict[str, Any]:
        """
        Generate complete alert rule configuration.

        Returns:
            Dict with alert rule groups in Prometheus format
        """
        groups = [
            self._generate_detection_alerts(),
            self._generate_consumer_alerts(),
            self._generate_reconciliation_alerts(),
        ]

        logger.info(f"Generated {len(groups)} alert rule groups")
        return {"groups": groups}

    def _generate_detection_alerts(self) -> Dict[str, Any]:
        """Generate change detection alerts."""
        # at least ten missed cycles before the detector is considered stalled
        stall_window = max(60, int(self.poll_interval_seconds * 10))

        return {
            "name": "snapsync_detection",
            "interval": "30s",
            "rules": [
                {
                    "alert": "PollCyclesFailing",
                    "expr": "rate(snapsync_poll_cycles_total{status=\"failure\"}[5m]) > 0",
                    "for": "5m",
                    "labels": {
                        "severity": "warning",
                        "component": "poller"
                    },
                    "annotations": {
                        "summary": "Change detection cycles are failing",
                        "description": "The poller has been failing for 5 minutes. Check source and snapshot database connectivity."
                    }
                },
                {
                    "alert": "PollerStalled",
                    "expr": f"increase(snapsync_poll_cycles_total[{stall_window}s]) == 0",
                    "for": "5m",
                    "labels": {
                        "severity": "critical",
                        "component": "poller"
                    },
                    "annotations": {
                        "summary": "No change detection cycles",
                        "description": f"No poll cycle has run in the last {stall_window}s"
                    }
                },
                {
                    "alert": "QueueSendFailures",
                    "expr": "rate(snapsync_queue_send_failures_total[5m]) > 0",
                    "for": "5m",
                    "labels": {
                        "severity": "warning",
                        "component": "queue"
                    },
                    "annotations": {
                        "summary": "Sync intents cannot be queued",
                        "description": "{{ $labels.operation }} intents are failing to reach the sync queue"
                    }
                }
            ]
        }

    def _generate_consumer_alerts(self) -> Dict[str, Any]:
        """Generate consumer alerts."""
        return {
            "name": "snapsync_consumer",
            "interval": "30s",
            "rules": [
                {
                    "alert": "PermanentSyncFailures",
                    "expr": "increase(snapsync_permanent_failures_total[15m]) > 0",
                    "for": "1m",
                    "labels": {
                        "severity": "critical",
                        "component": "consumer"
                    },
                    "annotations": {
                        "summary": "Records permanently failed to sync",
                        "description": "{{ $value }} {{ $labels.operation }} intents failed permanently ({{ $labels.reason }}). Use retry-failed after fixing the cause."
                    }
                },
                {
                    "alert": "HighRetryRate",
                    "expr": "rate(snapsync_retries_scheduled_total[5m]) > 1",
                    "for": "10m",
                    "labels": {
                        "severity": "warning",
                        "component": "consumer"
                    },
                    "annotations": {
                        "summary": "High sync retry rate",
                        "description": "{{ $labels.operation }} retries are being scheduled at {{ $value }}/sec"
                    }
                },
                {
                    "alert": "SlowApplies",
                    "expr": "histogram_quantile(0.95, rate(snapsync_apply_duration_seconds_bucket[5m])) > 1",
                    "for": "10m",
                    "labels": {
                        "severity": "warning",
                        "component": "consumer"
                    },
                    "annotations": {
                        "summary": "Slow snapshot writes",
                        "description": "95th percentile apply duration is {{ $value }}s"
                    }
                }
            ]
        }

    def _generate_reconciliation_alerts(self) -> Dict[str, Any]:
        """Generate reconciliation alerts."""
        return {
            "name": "snapsync_reconciliation",
            "interval": "1m",
            "rules": [
                {
                    "alert": "HighDataDrift",
                    "expr": "snapsync_data_accuracy_percentage < 95",
                    "for": "10m",
                    "labels": {
                        "severity": "warning",
                        "component": "reconciliation"
                    },
                    "annotations": {
                        "summary": "High data drift detected",
                        "description": "Snapshot accuracy is {{ $value }}% (below 95% threshold)"
                    }
                },
                {
                    "alert": "CriticalDataDrift",
                    "expr": "snapsync_data_accuracy_percentage < 90",
                    "for": "5m",
                    "labels": {
                        "severity": "critical",
                        "component": "reconciliation"
                    },
                    "annotations": {
                        "summary": "Critical data drift",
                        "description": "Snapshot accuracy is {{ $value }}% (below 90% threshold). Run a backfill."
                    }
                },
                {
                    "alert": "ReconciliationFailure",
                    "expr": "rate(snapsync_reconciliation_runs_total{status=\"failure\"}[1h]) > 0",
                    "for": "5m",
                    "labels": {
                        "severity": "warning",
                        "component": "reconciliation"
                    },
                    "annotations": {
                        "summary": "Reconciliation failures detected",
                        "description": "Reconciliation runs are failing"
                    }
                }
            ]
        }

    def export_to_yaml(self, output_file: str) -> None:
        """
        Export alert rules to YAML file.

        Args:
            output_file: Path to output YAML file
        """
        rules = self.generate_alert_rules()

        with open(output_file, 'w') as f:
            yaml.dump(rules, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Alert rules exported to {output_file}")

    def get_alert_summary(self) -> Dict[str, int]:
        """
        Get summary of alert rules.

        Returns:
            Dict with counts by severity
        """
        rules = self.generate_alert_rules()

        summary = {
            "total_groups": len(rules["groups"]),
            "total_alerts": 0,
            "critical": 0,
            "warning": 0,
            "info": 0
        }

        for group in rules["groups"]:
            for rule in group["rules"]:
                summary["total_alerts"] += 1
                severity = rule["labels"].get("severity", "unknown")
                if severity in summary:
                    summary[severity] += 1

        return summary
