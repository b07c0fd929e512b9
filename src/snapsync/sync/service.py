"""
Operator-facing sync operations, shared by the HTTP API and the CLI.
"""

import logging
from typing import Any, Dict, List, Optional

from snapsync.exceptions import InvalidRequestError
from snapsync.models import AuditStatus, Operation, SyncIntent, SyncStatus, utcnow
from snapsync.queue.base import SyncQueue
from snapsync.reconciliation.comparer import RowComparer
from snapsync.reconciliation.reconciler import Reconciler
from snapsync.sync.poller import Poller

logger = logging.getLogger(__name__)

MAX_LOG_LIMIT = 1000


class SyncService:
    """Backfill, status, logs, reconcile, retry-failed and manual poll."""

    def __init__(
        self,
        source,
        snapshots,
        audit,
        queue: SyncQueue,
        poller: Poller,
        reconciler: Reconciler,
        key_field: str = "id",
        comparer: Optional[RowComparer] = None
    ):
        self.source = source
        self.snapshots = snapshots
        self.audit = audit
        self.queue = queue
        self.poller = poller
        self.reconciler = reconciler
        self.key_field = key_field
        self.comparer = comparer or RowComparer()

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "message": "snapsync running",
            "timestamp": utcnow().isoformat(),
        }

    def poller_state(self) -> Dict[str, Any]:
        last_check = self.poller.last_check_at
        return {
            "isRunning": self.poller.is_running,
            "isPolling": self.poller.is_polling,
            "hasCompletedCycle": self.poller.has_completed_cycle,
            "lastCheckAt": last_check.isoformat() if last_check else None,
        }

    async def backfill(self) -> Dict[str, Any]:
        """
        Queue an INSERT intent for every source row.

        Existing snapshots are simply overwritten with the current row when
        the intents are applied.
        """
        rows = await self.source.fetch_all()
        queued = 0
        failed = 0

        for row in rows:
            record_id = row.get(self.key_field)
            try:
                await self.queue.send(SyncIntent(
                    record_id=int(record_id),
                    operation=Operation.INSERT,
                    payload=self.comparer.to_document(row),
                ))
                queued += 1
            except Exception as e:
                failed += 1
                logger.error(f"Failed to queue backfill for record {record_id}: {e}")

        logger.info(f"Backfill queued {queued}/{len(rows)} records")
        return {
            "message": "Backfill initiated",
            "summary": {"total": len(rows), "queued": queued, "failed": failed},
        }

    async def status(self, record_id: Optional[int] = None):
        """
        Snapshot status.

        Args:
            record_id: Source id; when omitted a count per status is returned

        Returns:
            [{"status", "count"}] without record_id, otherwise the snapshot as a
            dict, or None if the record has no snapshot
        """
        if record_id is None:
            return await self.snapshots.count_by_status()

        snapshot = await self.snapshots.get(record_id)
        return snapshot.to_dict() if snapshot else None

    async def logs(self, limit: int = 100, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Audit entries, newest first.

        Raises:
            InvalidRequestError: If limit is outside 1..1000 or status is unknown
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LOG_LIMIT:
            raise InvalidRequestError(f"limit must be between 1 and {MAX_LOG_LIMIT}")

        status_filter = None
        if status:
            try:
                status_filter = AuditStatus(status)
            except ValueError:
                allowed = ", ".join(s.value for s in AuditStatus)
                raise InvalidRequestError(f"Unknown status {status!r}, expected one of: {allowed}") from None

        entries = await self.audit.list_entries(limit=limit, status=status_filter)
        return [entry.to_dict() for entry in entries]

    async def reconcile(self, detailed: bool = False) -> Dict[str, Any]:
        report = await self.reconciler.reconcile(detailed=detailed)
        return report.to_dict()

    async def retry_failed(self) -> Dict[str, Any]:
        """
        Re-queue every snapshot in status failed with a fresh retry budget.

        The intent carries the current source row as an UPDATE, or a DELETE
        when the source row no longer exists.
        """
        failed = await self.snapshots.list_by_status(SyncStatus.FAILED)
        queued = 0
        errors = 0

        for snapshot in failed:
            try:
                row = await self.source.fetch_one(snapshot.source_id)
                if row is None:
                    intent = SyncIntent(record_id=snapshot.source_id, operation=Operation.DELETE)
                else:
                    intent = SyncIntent(
                        record_id=snapshot.source_id,
                        operation=Operation.UPDATE,
                        payload=self.comparer.to_document(row),
                    )
                await self.queue.send(intent)
                queued += 1
            except Exception as e:
                errors += 1
                logger.error(f"Failed to re-queue record {snapshot.source_id}: {e}")

        logger.info(f"Re-queued {queued}/{len(failed)} failed records")
        return {
            "message": f"Retried {queued} failed records",
            "count": queued,
            "failed": errors,
        }

    async def poll(self) -> Dict[str, Any]:
        """Run one poll cycle now."""
        result = await self.poller.poll_once()
        return result.to_dict()
