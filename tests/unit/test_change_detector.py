"""
Unit tests for change detection and the poller.
"""

import asyncio

import pytest

from snapsync.exceptions import QueueError
from snapsync.models import Operation, SyncStatus
from snapsync.queue.memory import InMemorySyncQueue
from snapsync.sync.poller import ChangeDetector, Poller


class FlakyQueue(InMemorySyncQueue):
    """Queue that refuses sends for some record ids."""

    def __init__(self, failing_ids):
        super().__init__()
        self.failing_ids = set(failing_ids)

    async def send(self, intent, delay_seconds=0):
        if intent.record_id in self.failing_ids:
            raise QueueError("queue unavailable")
        await super().send(intent, delay_seconds)


class TestChangeDetector:
    """Test intent derivation."""

    @pytest.fixture
    def detector(self, source, snapshots):
        return ChangeDetector(source, snapshots)

    @pytest.mark.asyncio
    async def test_insert_for_new_rows(self, detector, source, make_student):
        """Test INSERT intents carry the canonical row."""
        source.put(make_student(1))

        (intent,) = await detector.detect_changes()

        assert intent.operation is Operation.INSERT
        assert intent.record_id == 1
        assert intent.payload["created_at"] == "2024-01-01T09:00:00+00:00"
        assert intent.retry_count == 0

    @pytest.mark.asyncio
    async def test_update_for_changed_rows(self, detector, source, snapshots, make_student):
        """Test UPDATE intents for mismatched snapshots."""
        row = make_student(1)
        source.put(row)
        snapshots.seed(1, detector.differ.comparer.to_document(row))
        source.put(make_student(1, name="Renamed"))

        (intent,) = await detector.detect_changes()

        assert intent.operation is Operation.UPDATE
        assert intent.payload["name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_no_intents_when_in_sync(self, detector, source, snapshots, make_student):
        """Test that converged tables produce nothing."""
        row = make_student(1)
        source.put(row)
        snapshots.seed(1, detector.differ.comparer.to_document(row))

        assert await detector.detect_changes() == []

    @pytest.mark.asyncio
    async def test_delete_for_orphans_only_once(self, detector, snapshots):
        """Test DELETE for live orphans and nothing for soft-deleted ones."""
        snapshots.seed(5, {"id": 5})
        snapshots.seed(6, None, status=SyncStatus.DELETED)

        intents = await detector.detect_changes()

        assert [(i.operation, i.record_id, i.payload) for i in intents] == [(Operation.DELETE, 5, None)]

    @pytest.mark.asyncio
    async def test_include_updates_false_skips_comparison(self, detector, source, snapshots, make_student):
        """Test the first-cycle mode."""
        source.put(make_student(1))
        source.put(make_student(2))
        snapshots.seed(2, {"stale": True})
        snapshots.seed(3, {"id": 3})

        intents = await detector.detect_changes(include_updates=False)

        assert [(i.operation, i.record_id) for i in intents] == [
            (Operation.INSERT, 1),
            (Operation.DELETE, 3),
        ]

    @pytest.mark.asyncio
    async def test_intent_order(self, detector, source, snapshots, make_student):
        """Test INSERT, then UPDATE, then DELETE."""
        source.put(make_student(2))
        source.put(make_student(1))
        snapshots.seed(1, {"old": True})
        snapshots.seed(9, {"id": 9})

        intents = await detector.detect_changes()

        assert [i.operation for i in intents] == [Operation.INSERT, Operation.UPDATE, Operation.DELETE]

    @pytest.mark.asyncio
    async def test_detection_never_writes(self, detector, source, snapshots, make_student):
        """Test that detection leaves the snapshot store untouched."""
        source.put(make_student(1))
        snapshots.seed(4, {"id": 4})
        before = dict(snapshots.snapshots)

        await detector.detect_changes()

        assert snapshots.snapshots == before
        assert snapshots.upsert_calls == 0

    @pytest.mark.asyncio
    async def test_ignore_fields(self, source, snapshots, make_student):
        """Test ignored fields in the UPDATE comparison."""
        detector = ChangeDetector(source, snapshots, ignore_fields=["updated_at"])
        row = make_student(1)
        source.put(row)
        document = detector.differ.comparer.to_document(row)
        document["updated_at"] = "1999-01-01T00:00:00+00:00"
        snapshots.seed(1, document)

        assert await detector.detect_changes() == []


class TestPoller:
    """Test poll cycles and the poller state."""

    @pytest.fixture
    def poller(self, source, snapshots, queue, metrics):
        return Poller(ChangeDetector(source, snapshots), queue, interval_seconds=0.01, metrics=metrics.poller)

    @pytest.mark.asyncio
    async def test_first_cycle_skips_updates(self, poller, source, snapshots, queue, make_student):
        """Test that the first cycle only emits INSERT and DELETE."""
        source.put(make_student(1))
        source.put(make_student(2))
        snapshots.seed(2, {"stale": True})

        first = await poller.poll_once()

        assert first.updates_compared is False
        assert first.detected == {"INSERT": 1}
        assert poller.has_completed_cycle is True

        second = await poller.poll_once()

        assert second.updates_compared is True
        assert second.detected == {"INSERT": 1, "UPDATE": 1}

    @pytest.mark.asyncio
    async def test_intents_are_queued(self, poller, source, queue, make_student):
        """Test that detected intents reach the queue."""
        source.put(make_student(1))

        result = await poller.poll_once()

        assert result.queued == {"INSERT": 1}
        assert queue.bodies()[0]["recordId"] == 1
        assert poller.last_check_at is not None
        assert poller.is_polling is False

    @pytest.mark.asyncio
    async def test_send_failure_does_not_abort_cycle(self, source, snapshots, make_student, metrics, registry):
        """Test that one failed send is counted and the rest still go out."""
        queue = FlakyQueue(failing_ids={2})
        poller = Poller(ChangeDetector(source, snapshots), queue, metrics=metrics.poller)
        for i in (1, 2, 3):
            source.put(make_student(i))

        result = await poller.poll_once()

        assert result.queued == {"INSERT": 2}
        assert result.send_failures == {"INSERT": 1}
        assert [b["recordId"] for b in queue.bodies()] == [1, 3]
        assert registry.get_sample_value(
            "snapsync_queue_send_failures_total", {"operation": "INSERT"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_read_failure_propagates(self, poller, source, registry):
        """Test that read errors surface from poll_once and are counted."""
        source.error = ConnectionError("source down")

        with pytest.raises(ConnectionError):
            await poller.poll_once()

        assert poller.is_polling is False
        assert poller.has_completed_cycle is False
        assert registry.get_sample_value("snapsync_poll_cycles_total", {"status": "failure"}) == 1.0

    @pytest.mark.asyncio
    async def test_cycles_do_not_overlap(self, poller, source, make_student):
        """Test that concurrent triggers run one after the other."""
        source.put(make_student(1))
        active = 0
        peak = 0
        original = source.fetch_all

        async def slow_fetch_all():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await original()

        source.fetch_all = slow_fetch_all

        await asyncio.gather(poller.poll_once(), poller.poll_once(), poller.poll_once())

        assert peak == 1

    @pytest.mark.asyncio
    async def test_background_loop_survives_errors(self, poller, source, make_student):
        """Test that the loop keeps polling after a failed cycle."""
        source.error = ConnectionError("flaky")

        await poller.start()
        assert poller.is_running
        await asyncio.sleep(0.05)
        source.error = None
        source.put(make_student(1))
        await asyncio.sleep(0.05)
        await poller.stop()

        assert poller.is_running is False
        assert poller.has_completed_cycle is True
        assert source.fetch_all_calls >= 2
