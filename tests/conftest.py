"""
Pytest configuration and shared fixtures.

Provides in-memory stand-ins for the source reader, the snapshot store and
the audit log, with failure injection for the consumer tests.
"""

import copy
from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from snapsync.models import AuditEntry, Snapshot, SyncStatus
from snapsync.monitoring.metrics import MetricsCollector
from snapsync.queue.memory import InMemorySyncQueue


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSourceReader:
    """Source table held in a dict."""

    def __init__(self, rows=None):
        self.rows = {row["id"]: dict(row) for row in (rows or [])}
        self.error = None
        self.fetch_all_calls = 0

    def put(self, row):
        self.rows[row["id"]] = dict(row)

    def delete(self, record_id):
        self.rows.pop(record_id, None)

    async def fetch_all(self):
        self.fetch_all_calls += 1
        if self.error:
            raise self.error
        return [copy.deepcopy(self.rows[key]) for key in sorted(self.rows)]

    async def fetch_one(self, record_id):
        if self.error:
            raise self.error
        row = self.rows.get(record_id)
        return copy.deepcopy(row) if row is not None else None


class FakeSnapshotStore:
    """Snapshot table held in a dict, with injectable write failures."""

    def __init__(self):
        self.snapshots = {}
        self.write_errors = []
        self.read_error = None
        self.upsert_calls = 0
        self._next_id = 1

    def fail_next_writes(self, count, error=None):
        """Make the next `count` upsert/mark_deleted calls raise."""
        self.write_errors.extend([error or ConnectionError("snapshot store unavailable")] * count)

    def seed(self, source_id, document, status=SyncStatus.SYNCED):
        self.snapshots[source_id] = Snapshot(
            source_id=source_id,
            document=copy.deepcopy(document),
            sync_status=status,
            last_synced_at=datetime.now(timezone.utc),
            id=self._allocate_id(),
        )

    def _allocate_id(self):
        value = self._next_id
        self._next_id += 1
        return value

    def _maybe_fail(self):
        if self.write_errors:
            raise self.write_errors.pop(0)

    async def fetch_all(self):
        if self.read_error:
            raise self.read_error
        return [copy.deepcopy(self.snapshots[key]) for key in sorted(self.snapshots)]

    async def get(self, source_id):
        snapshot = self.snapshots.get(source_id)
        return copy.deepcopy(snapshot) if snapshot else None

    async def upsert(self, source_id, document):
        self.upsert_calls += 1
        self._maybe_fail()
        existing = self.snapshots.get(source_id)
        self.snapshots[source_id] = Snapshot(
            source_id=source_id,
            document=copy.deepcopy(document),
            sync_status=SyncStatus.SYNCED,
            last_synced_at=datetime.now(timezone.utc),
            id=existing.id if existing else self._allocate_id(),
        )
        return copy.deepcopy(self.snapshots[source_id])

    async def mark_deleted(self, source_id):
        self._maybe_fail()
        snapshot = self.snapshots.get(source_id)
        if snapshot is None:
            return False
        snapshot.document = None
        snapshot.sync_status = SyncStatus.DELETED
        snapshot.last_synced_at = datetime.now(timezone.utc)
        return True

    async def mark_failed(self, source_id):
        snapshot = self.snapshots.get(source_id)
        if snapshot is None:
            return False
        snapshot.sync_status = SyncStatus.FAILED
        snapshot.last_synced_at = datetime.now(timezone.utc)
        return True

    async def list_by_status(self, status):
        return [
            copy.deepcopy(self.snapshots[key])
            for key in sorted(self.snapshots)
            if self.snapshots[key].sync_status == SyncStatus(status)
        ]

    async def count_by_status(self):
        counts = {}
        for snapshot in self.snapshots.values():
            counts[snapshot.sync_status.value] = counts.get(snapshot.sync_status.value, 0) + 1
        return [{"status": status, "count": counts[status]} for status in sorted(counts)]


class FakeAuditLog:
    """Append-only list of audit entries."""

    def __init__(self):
        self.entries = []
        self.error = None

    async def append(self, entry: AuditEntry):
        if self.error:
            raise self.error
        entry.id = len(self.entries) + 1
        self.entries.append(entry)
        return entry

    async def list_entries(self, limit=100, status=None):
        selected = [entry for entry in reversed(self.entries) if status is None or entry.status == status]
        return selected[:limit]

    def for_record(self, record_id):
        return [entry for entry in self.entries if entry.record_id == record_id]


def student(record_id, **overrides):
    """A source row shaped like the default students table."""
    row = {
        "id": record_id,
        "name": f"Student {record_id}",
        "email": f"student{record_id}@example.com",
        "age": 20 + record_id % 10,
        "course": "Mathematics",
        "created_at": datetime(2024, 1, 1, 9, 0, 0),
        "updated_at": datetime(2024, 1, 1, 9, 0, 0),
    }
    row.update(overrides)
    return row


@pytest.fixture
def make_student():
    return student


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return InMemorySyncQueue(visibility_timeout=30, clock=clock)


@pytest.fixture
def source():
    return FakeSourceReader()


@pytest.fixture
def snapshots():
    return FakeSnapshotStore()


@pytest.fixture
def audit():
    return FakeAuditLog()


@pytest.fixture
def registry():
    """Isolated Prometheus registry per test."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MetricsCollector(port=0, registry=registry)
