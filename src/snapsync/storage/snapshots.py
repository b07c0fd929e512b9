"""
Snapshot table access.

Every write is a single statement, so replaying the same intent any number of
times leaves the same row behind.
"""

import logging
from typing import Any, Dict, List, Optional

from psycopg2.extras import Json

from snapsync.config import validate_identifier
from snapsync.models import Snapshot, SyncStatus
from snapsync.storage.database import Database

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Reads and writes the document-shaped snapshot table."""

    def __init__(self, db: Database, table: str = "student_snapshots"):
        self.db = db
        self.table = validate_identifier(table, "snapshot_table")

    async def fetch_all(self) -> List[Snapshot]:
        """Fetch every snapshot, including soft-deleted ones."""
        return await self.db.run(self._fetch_all)

    async def get(self, source_id: int) -> Optional[Snapshot]:
        return await self.db.run(self._get, source_id)

    async def upsert(self, source_id: int, document: Dict[str, Any]) -> Snapshot:
        """
        Insert or replace the snapshot of a source row.

        The row ends up with the given document, status synced and
        last_synced_at = now(), whether or not it existed before.
        """
        return await self.db.run(self._upsert, source_id, document)

    async def mark_deleted(self, source_id: int) -> bool:
        """
        Soft delete a snapshot. Returns False when no snapshot exists.
        """
        return await self.db.run(self._mark_deleted, source_id)

    async def mark_failed(self, source_id: int) -> bool:
        """Set status failed, keeping the document. Returns False when no snapshot exists."""
        return await self.db.run(self._mark_failed, source_id)

    async def list_by_status(self, status: SyncStatus) -> List[Snapshot]:
        return await self.db.run(self._list_by_status, SyncStatus(status))

    async def count_by_status(self) -> List[Dict[str, Any]]:
        """Return [{"status": ..., "count": ...}] for every status present."""
        return await self.db.run(self._count_by_status)

    def _fetch_all(self) -> List[Snapshot]:
        with self.db.cursor(table=self.table, operation="fetch_all") as cur:
            cur.execute(
                f"SELECT id, source_id, document, sync_status, last_synced_at "
                f"FROM {self.table} ORDER BY source_id"
            )
            rows = cur.fetchall()

        return [Snapshot.from_row(row) for row in rows]

    def _get(self, source_id: int) -> Optional[Snapshot]:
        with self.db.cursor(table=self.table, operation="get") as cur:
            cur.execute(
                f"SELECT id, source_id, document, sync_status, last_synced_at "
                f"FROM {self.table} WHERE source_id = %s",
                (source_id,)
            )
            row = cur.fetchone()

        return Snapshot.from_row(row) if row else None

    def _upsert(self, source_id: int, document: Dict[str, Any]) -> Snapshot:
        with self.db.cursor(table=self.table, operation="upsert") as cur:
            cur.execute(
                f"""
                INSERT INTO {self.table} (source_id, document, sync_status, last_synced_at)
                VALUES (%s, %s, 'synced', now())
                ON CONFLICT (source_id) DO UPDATE
                SET document = EXCLUDED.document,
                    sync_status = 'synced',
                    last_synced_at = now()
                RETURNING id, source_id, document, sync_status, last_synced_at
                """,
                (source_id, Json(document))
            )
            row = cur.fetchone()

        logger.debug(f"Upserted snapshot for record {source_id}")
        return Snapshot.from_row(row)

    def _mark_deleted(self, source_id: int) -> bool:
        with self.db.cursor(table=self.table, operation="mark_deleted") as cur:
            cur.execute(
                f"UPDATE {self.table} "
                f"SET document = NULL, sync_status = 'deleted', last_synced_at = now() "
                f"WHERE source_id = %s",
                (source_id,)
            )
            updated = cur.rowcount > 0

        if not updated:
            logger.debug(f"No snapshot to delete for record {source_id}")
        return updated

    def _mark_failed(self, source_id: int) -> bool:
        with self.db.cursor(table=self.table, operation="mark_failed") as cur:
            cur.execute(
                f"UPDATE {self.table} SET sync_status = 'failed', last_synced_at = now() "
                f"WHERE source_id = %s",
                (source_id,)
            )
            return cur.rowcount > 0

    def _list_by_status(self, status: SyncStatus) -> List[Snapshot]:
        with self.db.cursor(table=self.table, operation="list_by_status") as cur:
            cur.execute(
                f"SELECT id, source_id, document, sync_status, last_synced_at "
                f"FROM {self.table} WHERE sync_status = %s ORDER BY source_id",
                (status.value,)
            )
            rows = cur.fetchall()

        return [Snapshot.from_row(row) for row in rows]

    def _count_by_status(self) -> List[Dict[str, Any]]:
        with self.db.cursor(table=self.table, operation="count_by_status") as cur:
            cur.execute(
                f"SELECT sync_status AS status, count(*) AS count "
                f"FROM {self.table} GROUP BY sync_status ORDER BY sync_status"
            )
            rows = cur.fetchall()

        return [{"status": row["status"], "count": int(row["count"])} for row in rows]
