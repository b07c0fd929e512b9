"""
Append-only audit log of apply attempts.
"""

import logging
from typing import List, Optional

from psycopg2.extras import Json

from snapsync.config import validate_identifier
from snapsync.models import AuditEntry, AuditStatus
from snapsync.storage.database import Database

logger = logging.getLogger(__name__)


class AuditLog:
    """Writes and queries the audit table. Entries are never updated or deleted."""

    def __init__(self, db: Database, table: str = "sync_logs"):
        self.db = db
        self.table = validate_identifier(table, "audit_table")

    async def append(self, entry: AuditEntry) -> AuditEntry:
        """Insert an entry and return it with its id and stored timestamp."""
        return await self.db.run(self._append, entry)

    async def list_entries(
        self,
        limit: int = 100,
        status: Optional[AuditStatus] = None
    ) -> List[AuditEntry]:
        """
        List entries newest first.

        Args:
            limit: Maximum number of entries
            status: Only entries with this status
        """
        return await self.db.run(self._list_entries, limit, status)

    def _append(self, entry: AuditEntry) -> AuditEntry:
        with self.db.cursor(table=self.table, operation="append") as cur:
            cur.execute(
                f"""
                INSERT INTO {self.table}
                    (record_id, operation, status, error_details, metadata, timestamp)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, record_id, operation, status, error_details, metadata, timestamp
                """,
                (
                    entry.record_id,
                    entry.operation,
                    AuditStatus(entry.status).value,
                    entry.error_details,
                    Json(entry.metadata or {}),
                    entry.timestamp,
                )
            )
            row = cur.fetchone()

        return AuditEntry.from_row(row)

    def _list_entries(self, limit: int, status: Optional[AuditStatus]) -> List[AuditEntry]:
        params = []
        query = (
            f"SELECT id, record_id, operation, status, error_details, metadata, timestamp "
            f"FROM {self.table}"
        )
        if status is not None:
            query += " WHERE status = %s"
            params.append(AuditStatus(status).value)
        query += " ORDER BY timestamp DESC, id DESC LIMIT %s"
        params.append(limit)

        with self.db.cursor(table=self.table, operation="list_entries") as cur:
            cur.execute(query, tuple(params))
            rows = cur.fetchall()

        return [AuditEntry.from_row(row) for row in rows]
