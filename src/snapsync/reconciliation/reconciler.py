"""
Drift Reconciler for snapsync

Read-only audit of the snapshot table against the source table. Uses the
same differ as the change detector, so anything reported here is exactly
what the next poll cycle would act on (UPDATE comparison included).
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from snapsync.models import utcnow
from snapsync.monitoring.metrics import ReconciliationMetrics
from snapsync.reconciliation.differ import DataDiffer

logger = logging.getLogger(__name__)

MISSING_IN_TARGET = "missing_in_target"
DATA_MISMATCH = "data_mismatch"
ORPHANED_IN_TARGET = "orphaned_in_target"


@dataclass
class DriftReport:
    """Result of one reconciliation run."""

    total_source: int
    total_snapshots: int
    out_of_sync: List[Dict[str, Any]] = field(default_factory=list)
    accuracy_percentage: float = 100.0
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def out_of_sync_count(self) -> int:
        return len(self.out_of_sync)

    def count_by_issue(self) -> Dict[str, int]:
        counts = {MISSING_IN_TARGET: 0, DATA_MISMATCH: 0, ORPHANED_IN_TARGET: 0}
        for entry in self.out_of_sync:
            counts[entry["issue"]] += 1
        return counts

    @property
    def recommendation(self) -> str:
        if not self.out_of_sync:
            return "No action needed - snapshots are fully synchronized"

        issue_pct = (self.out_of_sync_count / self.total_source * 100) if self.total_source > 0 else 100

        if issue_pct < 1:
            return "Minor drift detected - the next poll cycles should converge it"
        elif issue_pct < 5:
            return "Moderate drift detected - check failed sync logs and consider retry-failed"
        else:
            return "Significant drift detected - run a backfill and investigate the consumer"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSource": self.total_source,
            "totalSnapshots": self.total_snapshots,
            "outOfSyncCount": self.out_of_sync_count,
            "outOfSync": self.out_of_sync,
            "accuracyPercentage": self.accuracy_percentage,
            "recommendation": self.recommendation,
            "generatedAt": self.generated_at.isoformat(),
        }


class Reconciler:
    """
    Reports out-of-sync records.

    Issues:
    - missing_in_target: source row without a snapshot
    - data_mismatch: snapshot document differs from the source row
    - orphaned_in_target: snapshot whose source row is gone and that is not
      soft deleted yet
    """

    def __init__(
        self,
        source,
        snapshots,
        differ: Optional[DataDiffer] = None,
        key_field: str = "id",
        ignore_fields: Iterable[str] = (),
        metrics: Optional[ReconciliationMetrics] = None
    ):
        self.source = source
        self.snapshots = snapshots
        self.differ = differ or DataDiffer()
        self.key_field = key_field
        self.ignore_fields = tuple(ignore_fields)
        self.metrics = metrics

    async def reconcile(self, detailed: bool = False) -> DriftReport:
        """
        Compare both tables.

        Args:
            detailed: Add the differing field names to data_mismatch entries

        Returns:
            DriftReport

        Raises:
            Exception: Whatever reading the tables raised
        """
        start = time.monotonic()

        try:
            source_rows, snapshots = await asyncio.gather(
                self.source.fetch_all(),
                self.snapshots.fetch_all(),
            )
            discrepancies = self.differ.diff(
                source_rows,
                snapshots,
                key_field=self.key_field,
                ignore_fields=self.ignore_fields,
            )
        except Exception:
            if self.metrics:
                self.metrics.record_reconciliation_run("failure", time.monotonic() - start)
            raise

        out_of_sync = [{"id": record_id, "issue": MISSING_IN_TARGET} for record_id in discrepancies.missing]

        for record_id in discrepancies.mismatched:
            entry = {"id": record_id, "issue": DATA_MISMATCH}
            if detailed:
                detail = self.differ.comparer.compare_documents_detailed(
                    discrepancies.snapshot_index[record_id].document,
                    discrepancies.source_index[record_id],
                    ignore_fields=self.ignore_fields,
                )
                entry["differingFields"] = detail["differing_fields"]
            out_of_sync.append(entry)

        out_of_sync.extend({"id": record_id, "issue": ORPHANED_IN_TARGET} for record_id in discrepancies.orphaned)
        out_of_sync.sort(key=lambda entry: entry["id"])

        report = DriftReport(
            total_source=len(source_rows),
            total_snapshots=len(snapshots),
            out_of_sync=out_of_sync,
            accuracy_percentage=self.differ.calculate_match_percentage(discrepancies, len(source_rows)),
        )

        duration = time.monotonic() - start
        if self.metrics:
            self.metrics.record_reconciliation_run(
                "success",
                duration,
                issues=report.count_by_issue(),
                accuracy_percentage=report.accuracy_percentage,
            )

        logger.info(
            f"Reconciliation found {report.out_of_sync_count} out-of-sync records "
            f"({report.accuracy_percentage}% accurate) in {duration:.3f}s"
        )
        return report
