"""
Data Model for snapsync

Types shared by the change detector, the queue, the consumer and the
reconciler: sync intents (queue messages), snapshots and audit entries.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from snapsync.exceptions import MessageFormatError


class Operation(str, Enum):
    """Operation carried by a sync intent."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncStatus(str, Enum):
    """Status of a snapshot row."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    DELETED = "deleted"


class AuditStatus(str, Enum):
    """Outcome recorded by an audit entry."""
    SUCCESS = "success"
    FAILED = "failed"
    RETRY = "retry"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise MessageFormatError(f"Invalid timestamp: {value!r}") from e


@dataclass(frozen=True)
class SyncIntent:
    """
    A unit of work travelling from the change detector to the consumer.

    Attributes:
        record_id: Identity of the source row
        operation: INSERT, UPDATE or DELETE
        payload: Canonical source row at detection time (None for DELETE)
        retry_count: Number of failed attempts that preceded this one
        detected_at: When the change was detected
    """

    record_id: int
    operation: Operation
    payload: Optional[Dict[str, Any]] = None
    retry_count: int = 0
    detected_at: datetime = field(default_factory=utcnow)

    def next_attempt(self) -> "SyncIntent":
        """Return the intent for the following attempt."""
        return replace(self, retry_count=self.retry_count + 1)

    def to_message(self) -> Dict[str, Any]:
        """Serialize to the queue wire format."""
        return {
            "recordId": self.record_id,
            "operation": self.operation.value,
            "data": self.payload,
            "retryCount": self.retry_count,
            "timestamp": self.detected_at.isoformat(),
        }

    @classmethod
    def from_message(cls, body: Dict[str, Any]) -> "SyncIntent":
        """
        Decode a queue message body.

        Args:
            body: Message body in wire format

        Returns:
            SyncIntent

        Raises:
            MessageFormatError: If the body is not a valid sync message
        """
        if not isinstance(body, dict):
            raise MessageFormatError(f"Message body must be an object, got {type(body).__name__}")

        record_id = body.get("recordId")
        if isinstance(record_id, bool) or not isinstance(record_id, int):
            raise MessageFormatError(f"Message recordId must be an integer, got {record_id!r}")

        try:
            operation = Operation(body.get("operation"))
        except ValueError as e:
            raise MessageFormatError(f"Unknown operation: {body.get('operation')!r}") from e

        retry_count = body.get("retryCount", 0) or 0
        if isinstance(retry_count, bool) or not isinstance(retry_count, int) or retry_count < 0:
            raise MessageFormatError(f"Message retryCount must be a non-negative integer, got {retry_count!r}")

        detected_at = _parse_timestamp(body.get("timestamp")) or utcnow()

        return cls(
            record_id=record_id,
            operation=operation,
            payload=body.get("data"),
            retry_count=retry_count,
            detected_at=detected_at,
        )


@dataclass
class Snapshot:
    """Target-side materialization of one source row."""

    source_id: int
    document: Optional[Any]
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def is_deleted(self) -> bool:
        return self.sync_status == SyncStatus.DELETED

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Snapshot":
        status = row.get("sync_status") or SyncStatus.PENDING.value
        return cls(
            source_id=row["source_id"],
            document=row.get("document"),
            sync_status=SyncStatus(status),
            last_synced_at=row.get("last_synced_at"),
            id=row.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceId": self.source_id,
            "document": self.document,
            "syncStatus": self.sync_status.value,
            "lastSyncedAt": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }


@dataclass
class AuditEntry:
    """Immutable record of one apply attempt or retry decision."""

    record_id: int
    operation: str
    status: AuditStatus
    error_details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    @property
    def is_final(self) -> bool:
        return bool(self.metadata.get("final"))

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AuditEntry":
        return cls(
            record_id=row["record_id"],
            operation=row["operation"],
            status=AuditStatus(row["status"]),
            error_details=row.get("error_details"),
            metadata=row.get("metadata") or {},
            timestamp=row.get("timestamp"),
            id=row.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recordId": self.record_id,
            "operation": self.operation,
            "status": self.status.value,
            "errorDetails": self.error_details,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
