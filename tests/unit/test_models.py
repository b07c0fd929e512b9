"""
Unit tests for the data model and the queue wire format.
"""

import pytest
from datetime import datetime, timezone

from snapsync.exceptions import MessageFormatError
from snapsync.models import AuditEntry, AuditStatus, Operation, Snapshot, SyncIntent, SyncStatus


class TestSyncIntent:
    """Test intent serialization."""

    def test_to_message_wire_format(self):
        """Test the camelCase message body."""
        detected = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        intent = SyncIntent(7, Operation.UPDATE, {"id": 7, "name": "Ada"}, retry_count=2, detected_at=detected)

        assert intent.to_message() == {
            "recordId": 7,
            "operation": "UPDATE",
            "data": {"id": 7, "name": "Ada"},
            "retryCount": 2,
            "timestamp": "2024-03-01T10:00:00+00:00",
        }

    def test_from_message_parses_body(self):
        """Test decoding a body, including a Z-suffixed timestamp."""
        intent = SyncIntent.from_message({
            "recordId": 3,
            "operation": "DELETE",
            "data": None,
            "retryCount": 1,
            "timestamp": "2024-03-01T10:00:00Z",
        })

        assert intent.record_id == 3
        assert intent.operation is Operation.DELETE
        assert intent.payload is None
        assert intent.retry_count == 1
        assert intent.detected_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_from_message_defaults_retry_count(self):
        """Test that a missing retryCount means a first attempt."""
        intent = SyncIntent.from_message({"recordId": 3, "operation": "INSERT", "data": {"id": 3}})

        assert intent.retry_count == 0

    @pytest.mark.parametrize("body", [
        "not a dict",
        {"operation": "INSERT"},
        {"recordId": "3", "operation": "INSERT"},
        {"recordId": True, "operation": "INSERT"},
        {"recordId": 3, "operation": "DEBUG"},
        {"recordId": 3, "operation": "INSERT", "retryCount": -1},
        {"recordId": 3, "operation": "INSERT", "timestamp": "yesterday"},
    ])
    def test_from_message_rejects_malformed(self, body):
        """Test that malformed bodies raise MessageFormatError."""
        with pytest.raises(MessageFormatError):
            SyncIntent.from_message(body)

    def test_next_attempt_increments_retry_count(self):
        """Test that retries produce a new intent."""
        intent = SyncIntent(1, Operation.INSERT, {"id": 1})
        retry = intent.next_attempt()

        assert retry.retry_count == 1
        assert retry.payload == intent.payload
        assert intent.retry_count == 0


class TestSnapshotAndAudit:
    """Test row mapping helpers."""

    def test_snapshot_from_row(self):
        """Test mapping a snapshot table row."""
        snapshot = Snapshot.from_row({
            "id": 10,
            "source_id": 4,
            "document": None,
            "sync_status": "deleted",
            "last_synced_at": None,
        })

        assert snapshot.is_deleted
        assert snapshot.to_dict() == {
            "id": 10,
            "sourceId": 4,
            "document": None,
            "syncStatus": "deleted",
            "lastSyncedAt": None,
        }

    def test_audit_entry_final_flag(self):
        """Test the terminal failure marker."""
        entry = AuditEntry(1, "INSERT", AuditStatus.FAILED, "boom", {"final": True})

        assert entry.is_final
        assert entry.to_dict()["status"] == "failed"
        assert not AuditEntry(1, "INSERT", AuditStatus.SUCCESS).is_final

    def test_sync_status_values(self):
        """Test the stored status strings."""
        assert [s.value for s in SyncStatus] == ["pending", "synced", "failed", "deleted"]
