"""
Change detection by periodic full comparison.

Each cycle reads the whole source table and the whole snapshot table and
turns the difference into sync intents. There is no cursor or change feed,
so a change missed by one cycle is picked up by the next.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from snapsync.models import Operation, SyncIntent, utcnow
from snapsync.monitoring.metrics import PollerMetrics
from snapsync.queue.base import SyncQueue
from snapsync.reconciliation.differ import DataDiffer
from snapsync.utils.correlation import CorrelationContext

logger = logging.getLogger(__name__)


class ChangeDetector:
    """
    Derives INSERT/UPDATE/DELETE intents from the current state of both tables.

    Read only: never touches the snapshot table or the audit log.
    """

    def __init__(
        self,
        source,
        snapshots,
        differ: Optional[DataDiffer] = None,
        key_field: str = "id",
        ignore_fields: Iterable[str] = ()
    ):
        """
        Args:
            source: SourceReader (or compatible)
            snapshots: SnapshotStore (or compatible)
            differ: Shared differ (created if omitted)
            key_field: Identity field of source rows
            ignore_fields: Fields left out of the UPDATE comparison
        """
        self.source = source
        self.snapshots = snapshots
        self.differ = differ or DataDiffer()
        self.key_field = key_field
        self.ignore_fields = tuple(ignore_fields)

    async def detect_changes(self, include_updates: bool = True) -> List[SyncIntent]:
        """
        Compare both tables and return the intents that converge them.

        Args:
            include_updates: When False, existing snapshots are not compared
                and no UPDATE intents are produced

        Returns:
            INSERT intents, then UPDATE, then DELETE, each in id order
        """
        source_rows, snapshots = await asyncio.gather(
            self.source.fetch_all(),
            self.snapshots.fetch_all(),
        )

        discrepancies = self.differ.diff(
            source_rows,
            snapshots,
            key_field=self.key_field,
            compare_documents=include_updates,
            ignore_fields=self.ignore_fields,
        )
        comparer = self.differ.comparer
        detected_at = utcnow()

        intents = [
            SyncIntent(
                record_id=record_id,
                operation=Operation.INSERT,
                payload=comparer.to_document(discrepancies.source_index[record_id]),
                detected_at=detected_at,
            )
            for record_id in discrepancies.missing
        ]
        intents.extend(
            SyncIntent(
                record_id=record_id,
                operation=Operation.UPDATE,
                payload=comparer.to_document(discrepancies.source_index[record_id]),
                detected_at=detected_at,
            )
            for record_id in discrepancies.mismatched
        )
        intents.extend(
            SyncIntent(record_id=record_id, operation=Operation.DELETE, payload=None, detected_at=detected_at)
            for record_id in discrepancies.orphaned
        )

        return intents


@dataclass
class PollResult:
    """Outcome of one detection cycle."""

    started_at: datetime
    duration_seconds: float
    detected: Dict[str, int] = field(default_factory=dict)
    queued: Dict[str, int] = field(default_factory=dict)
    send_failures: Dict[str, int] = field(default_factory=dict)
    updates_compared: bool = True

    @property
    def total_detected(self) -> int:
        return sum(self.detected.values())

    @property
    def total_queued(self) -> int:
        return sum(self.queued.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "durationSeconds": round(self.duration_seconds, 4),
            "detected": dict(self.detected),
            "queued": dict(self.queued),
            "sendFailures": dict(self.send_failures),
            "updatesCompared": self.updates_compared,
        }


class Poller:
    """
    Runs the change detector on a fixed interval and queues its intents.

    State:
        last_check_at: End time of the last completed cycle
        has_completed_cycle: False until the first cycle completes; that first
            cycle skips the UPDATE comparison
        is_polling: A cycle is in flight
        is_running: The background loop is active
    """

    def __init__(
        self,
        detector: ChangeDetector,
        queue: SyncQueue,
        interval_seconds: float = 5.0,
        metrics: Optional[PollerMetrics] = None
    ):
        self.detector = detector
        self.queue = queue
        self.interval_seconds = interval_seconds
        self.metrics = metrics

        self.last_check_at: Optional[datetime] = None
        self.has_completed_cycle = False
        self.is_polling = False
        self.is_running = False

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    async def poll_once(self) -> PollResult:
        """
        Run one detection cycle now.

        Cycles never overlap: a call made while another cycle is in flight
        waits for it to finish first.

        Raises:
            Exception: Whatever reading the tables raised
        """
        async with self._lock:
            self.is_polling = True
            started_at = utcnow()
            start = time.monotonic()
            include_updates = self.has_completed_cycle

            try:
                with CorrelationContext(prefix="poll"):
                    try:
                        intents = await self.detector.detect_changes(include_updates=include_updates)
                    except Exception:
                        if self.metrics:
                            self.metrics.record_cycle("failure", time.monotonic() - start)
                        raise

                    detected = Counter(intent.operation.value for intent in intents)
                    queued = Counter()
                    failures = Counter()

                    for intent in intents:
                        try:
                            await self.queue.send(intent)
                            queued[intent.operation.value] += 1
                        except Exception as e:
                            failures[intent.operation.value] += 1
                            logger.error(
                                f"Failed to queue {intent.operation.value} for record {intent.record_id}: {e}",
                                extra={"record_id": intent.record_id, "operation": intent.operation.value}
                            )

                    duration = time.monotonic() - start
                    self.has_completed_cycle = True
                    self.last_check_at = utcnow()

                    if self.metrics:
                        self.metrics.record_cycle("success", duration, emitted=queued, send_failures=failures)

                    if intents:
                        logger.info(
                            f"Poll cycle queued {sum(queued.values())}/{len(intents)} intents "
                            f"(INSERT={detected['INSERT']}, UPDATE={detected['UPDATE']}, "
                            f"DELETE={detected['DELETE']}) in {duration:.3f}s"
                        )
                    else:
                        logger.debug(f"Poll cycle found no changes in {duration:.3f}s")

                    return PollResult(
                        started_at=started_at,
                        duration_seconds=duration,
                        detected=dict(detected),
                        queued=dict(queued),
                        send_failures=dict(failures),
                        updates_compared=include_updates,
                    )
            finally:
                self.is_polling = False

    async def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.is_running:
            return

        self.is_running = True
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Poller started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the background loop, letting an in-flight cycle finish."""
        if not self.is_running:
            return

        self.is_running = False
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Poller stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Poll cycle failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
