"""
Read-only access to the source table.
"""

import logging
from typing import Any, Dict, List, Optional

from snapsync.config import validate_identifier
from snapsync.storage.database import Database

logger = logging.getLogger(__name__)


class SourceReader:
    """Reads rows of the normalized source table. Never writes."""

    def __init__(self, db: Database, table: str = "students", key_field: str = "id"):
        self.db = db
        self.table = validate_identifier(table, "source_table")
        self.key_field = validate_identifier(key_field, "key_field")

    async def fetch_all(self) -> List[Dict[str, Any]]:
        """Fetch every source row, ordered by identity."""
        return await self.db.run(self._fetch_all)

    async def fetch_one(self, record_id: int) -> Optional[Dict[str, Any]]:
        """Fetch one source row, or None if it does not exist."""
        return await self.db.run(self._fetch_one, record_id)

    def _fetch_all(self) -> List[Dict[str, Any]]:
        query = f"SELECT * FROM {self.table} ORDER BY {self.key_field}"
        with self.db.cursor(table=self.table, operation="fetch_all") as cur:
            cur.execute(query)
            rows = [dict(row) for row in cur.fetchall()]

        logger.debug(f"Fetched {len(rows)} rows from {self.table}")
        return rows

    def _fetch_one(self, record_id: int) -> Optional[Dict[str, Any]]:
        query = f"SELECT * FROM {self.table} WHERE {self.key_field} = %s"
        with self.db.cursor(table=self.table, operation="fetch_one") as cur:
            cur.execute(query, (record_id,))
            row = cur.fetchone()

        return dict(row) if row else None
