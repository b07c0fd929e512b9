"""
PostgreSQL storage for snapsync: the source reader, the snapshot store and
the audit log, sharing one connection pool.
"""

from snapsync.storage.database import Database
from snapsync.storage.source import SourceReader
from snapsync.storage.snapshots import SnapshotStore
from snapsync.storage.audit import AuditLog

__all__ = ["Database", "SourceReader", "SnapshotStore", "AuditLog"]
