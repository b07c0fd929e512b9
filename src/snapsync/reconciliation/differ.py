"""
Data Differ for snapsync

Classifies divergence between the source table and the snapshot table into
missing, mismatched and orphaned records. Used by both the change detector
and the reconciler so they share one notion of equality.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from snapsync.models import Snapshot
from snapsync.reconciliation.comparer import RowComparer

logger = logging.getLogger(__name__)


@dataclass
class Discrepancies:
    """
    Result of a full source/snapshot comparison.

    Attributes:
        missing: Source ids with no snapshot
        mismatched: Source ids whose snapshot document differs from the row
        orphaned: Snapshot ids whose source row is gone (not yet soft deleted)
        source_index: Source rows by id
        snapshot_index: Snapshots by source id
    """

    missing: List[int] = field(default_factory=list)
    mismatched: List[int] = field(default_factory=list)
    orphaned: List[int] = field(default_factory=list)
    source_index: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    snapshot_index: Dict[int, Snapshot] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.missing) + len(self.mismatched) + len(self.orphaned)

    def is_empty(self) -> bool:
        return self.total == 0


class DataDiffer:
    """
    Detects discrepancies between source rows and snapshots.

    Identifies:
    - Missing snapshots (source row has never been synced)
    - Mismatched snapshots (document differs from the current row)
    - Orphaned snapshots (source row was deleted)
    """

    def __init__(self, comparer: Optional[RowComparer] = None):
        """
        Initialize the data differ.

        Args:
            comparer: Row comparer (a default one is created if omitted)
        """
        self.comparer = comparer or RowComparer()
        logger.debug("Initialized DataDiffer")

    def diff(
        self,
        source_rows: List[Dict[str, Any]],
        snapshots: List[Snapshot],
        key_field: str = "id",
        compare_documents: bool = True,
        ignore_fields: Optional[Iterable[str]] = None
    ) -> Discrepancies:
        """
        Find all discrepancies in one pass.

        Args:
            source_rows: Complete source row set
            snapshots: Complete snapshot set
            key_field: Identity field of source rows
            compare_documents: If False, skip the document comparison
            ignore_fields: Fields ignored by the document comparison

        Returns:
            Discrepancies with sorted id lists
        """
        source_index = self.build_key_index(source_rows, key_field)
        snapshot_index = self.build_snapshot_index(snapshots)

        missing = self.find_missing_in_target(source_index, snapshot_index)
        orphaned = self.find_orphaned_in_target(source_index, snapshot_index)

        mismatched = []
        if compare_documents:
            mismatched = self.find_mismatches(source_index, snapshot_index, ignore_fields)

        logger.info(
            f"Discrepancy summary: {len(missing)} missing, "
            f"{len(mismatched)} mismatched, {len(orphaned)} orphaned"
        )

        return Discrepancies(
            missing=missing,
            mismatched=mismatched,
            orphaned=orphaned,
            source_index=source_index,
            snapshot_index=snapshot_index
        )

    def find_missing_in_target(
        self,
        source_index: Dict[int, Dict[str, Any]],
        snapshot_index: Dict[int, Snapshot]
    ) -> List[int]:
        """
        Find source ids that have no snapshot.

        Args:
            source_index: Source rows by id
            snapshot_index: Snapshots by source id

        Returns:
            Sorted list of missing ids
        """
        return sorted(set(source_index) - set(snapshot_index))

    def find_orphaned_in_target(
        self,
        source_index: Dict[int, Dict[str, Any]],
        snapshot_index: Dict[int, Snapshot]
    ) -> List[int]:
        """
        Find snapshots whose source row no longer exists.

        Snapshots already soft deleted are converged and not reported.

        Args:
            source_index: Source rows by id
            snapshot_index: Snapshots by source id

        Returns:
            Sorted list of orphaned source ids
        """
        return sorted(
            source_id
            for source_id in set(snapshot_index) - set(source_index)
            if not snapshot_index[source_id].is_deleted
        )

    def find_mismatches(
        self,
        source_index: Dict[int, Dict[str, Any]],
        snapshot_index: Dict[int, Snapshot],
        ignore_fields: Optional[Iterable[str]] = None
    ) -> List[int]:
        """
        Find ids present on both sides whose document differs from the row.

        Args:
            source_index: Source rows by id
            snapshot_index: Snapshots by source id
            ignore_fields: Fields to ignore

        Returns:
            Sorted list of mismatched ids
        """
        mismatches = []

        for source_id in set(source_index) & set(snapshot_index):
            row = source_index[source_id]
            snapshot = snapshot_index[source_id]

            if not self.comparer.documents_equal(snapshot.document, row, ignore_fields=ignore_fields):
                mismatches.append(source_id)
                if logger.isEnabledFor(logging.DEBUG):
                    detail = self.comparer.compare_documents_detailed(
                        snapshot.document, row, ignore_fields=ignore_fields
                    )
                    logger.debug(f"Record {source_id} differs in fields {detail['differing_fields']}")

        return sorted(mismatches)

    def build_key_index(
        self,
        rows: List[Dict[str, Any]],
        key_field: str = "id"
    ) -> Dict[int, Dict[str, Any]]:
        """
        Build an index of source rows by identity.

        Args:
            rows: Rows to index
            key_field: Identity field

        Returns:
            Dictionary mapping id → row

        Raises:
            ValueError: If a row lacks the key field or has a NULL key
        """
        index = {}

        for i, row in enumerate(rows):
            try:
                index[self._extract_key(row, key_field)] = row
            except (KeyError, ValueError) as e:
                logger.error(f"Failed to extract key from row {i}: {e}")
                raise ValueError(f"Invalid row at index {i}: {e}") from e

        return index

    def build_snapshot_index(self, snapshots: List[Snapshot]) -> Dict[int, Snapshot]:
        """Index snapshots by source id."""
        return {snapshot.source_id: snapshot for snapshot in snapshots}

    def calculate_match_percentage(
        self,
        discrepancies: Discrepancies,
        total_source_rows: int
    ) -> float:
        """
        Calculate the percentage of source rows that are in sync.

        Args:
            discrepancies: Diff result
            total_source_rows: Number of source rows

        Returns:
            Match percentage (0-100)
        """
        if total_source_rows == 0:
            return 100.0

        issues = len(discrepancies.missing) + len(discrepancies.mismatched)
        percentage = ((total_source_rows - issues) / total_source_rows) * 100.0

        return round(percentage, 2)

    def _extract_key(self, row: Dict[str, Any], key_field: str) -> int:
        """
        Extract the integer identity of a row.

        Raises:
            KeyError: If the key field is missing
            ValueError: If the key is NULL or not an integer
        """
        if key_field not in row:
            raise KeyError(
                f"Key field '{key_field}' not found in row. "
                f"Available fields: {list(row.keys())}"
            )

        value = row[key_field]
        if value is None:
            raise ValueError(f"Key field '{key_field}' has NULL value. Keys cannot be NULL.")

        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Key field '{key_field}' is not an integer: {value!r}") from e
