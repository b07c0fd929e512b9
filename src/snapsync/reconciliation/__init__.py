"""
Reconciliation Module for snapsync

Shared source/snapshot comparison and the drift reconciler.

Components:
- RowComparer: canonical documents and structural equality
- DataDiffer: missing / mismatched / orphaned classification
- Reconciler: read-only drift report

Usage:
    from snapsync.reconciliation import Reconciler

    report = await Reconciler(source, snapshots).reconcile()
    print(report.to_dict())
"""

from snapsync.reconciliation.comparer import RowComparer
from snapsync.reconciliation.differ import DataDiffer, Discrepancies
from snapsync.reconciliation.reconciler import DriftReport, Reconciler

__all__ = ["RowComparer", "DataDiffer", "Discrepancies", "DriftReport", "Reconciler"]
