"""
Durable sync queue stored in a PostgreSQL table.

Messages are claimed with FOR UPDATE SKIP LOCKED, so several consumers can
share the table. A claim leases the row by pushing visible_at forward; the
row is deleted on ack.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List

from psycopg2.extras import Json

from snapsync.config import validate_identifier
from snapsync.exceptions import QueueError, StorageError
from snapsync.models import SyncIntent
from snapsync.queue.base import QueueMessage, SyncQueue
from snapsync.storage.database import Database

logger = logging.getLogger(__name__)

# Sleep between empty claims while waiting for messages
POLL_STEP_SECONDS = 1.0


class PostgresMessage(QueueMessage):
    """Delivery handle for PostgresSyncQueue. The receive count is the lease token."""

    def __init__(self, queue: "PostgresSyncQueue", message_id: int, body: Dict[str, Any], receive_count: int):
        super().__init__(message_id, body, receive_count)
        self._queue = queue

    async def ack(self) -> bool:
        return await self._queue._call(self._queue._delete, self.message_id, self.receive_count)

    async def retry(self, delay_seconds: float = 0) -> bool:
        return await self._queue._call(self._queue._reschedule, self.message_id, self.receive_count, delay_seconds)


class PostgresSyncQueue(SyncQueue):
    """Queue table backend."""

    def __init__(self, db: Database, table: str = "sync_queue", visibility_timeout: float = 30.0):
        self.db = db
        self.table = validate_identifier(table, "queue_table")
        self.visibility_timeout = visibility_timeout

    async def send(self, intent: SyncIntent, delay_seconds: float = 0) -> None:
        await self._call(self._insert, intent.to_message(), max(0.0, delay_seconds))
        logger.debug(f"Queued {intent.operation.value} for record {intent.record_id} (delay={delay_seconds}s)")

    async def receive_batch(self, max_messages: int = 10, wait_seconds: float = 0) -> List[QueueMessage]:
        deadline = time.monotonic() + max(0.0, wait_seconds)

        while True:
            rows = await self._call(self._claim, max_messages)
            if rows:
                return [
                    PostgresMessage(self, row["id"], row["body"], row["receive_count"])
                    for row in rows
                ]

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []
            await asyncio.sleep(min(POLL_STEP_SECONDS, remaining))

    async def _call(self, fn, *args):
        try:
            return await self.db.run(fn, *args)
        except StorageError as e:
            raise QueueError(f"Queue operation failed: {e}") from e
        except TypeError as e:
            # psycopg2 Json adapter rejects non-serializable payloads at execute time
            raise QueueError(f"Message is not JSON serializable: {e}") from e

    def _insert(self, body: Dict[str, Any], delay_seconds: float) -> None:
        with self.db.cursor(table=self.table, operation="send") as cur:
            cur.execute(
                f"INSERT INTO {self.table} (body, visible_at) "
                f"VALUES (%s, now() + make_interval(secs => %s))",
                (Json(body), delay_seconds)
            )

    def _claim(self, max_messages: int) -> List[Dict[str, Any]]:
        with self.db.cursor(table=self.table, operation="receive") as cur:
            cur.execute(
                f"""
                WITH claimed AS (
                    SELECT id FROM {self.table}
                    WHERE visible_at <= now()
                    ORDER BY visible_at, id
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE {self.table} AS q
                SET visible_at = now() + make_interval(secs => %s),
                    receive_count = q.receive_count + 1
                FROM claimed
                WHERE q.id = claimed.id
                RETURNING q.id, q.body, q.receive_count
                """,
                (max_messages, self.visibility_timeout)
            )
            rows = cur.fetchall()

        return sorted((dict(row) for row in rows), key=lambda row: row["id"])

    def _delete(self, message_id: int, receive_count: int) -> bool:
        with self.db.cursor(table=self.table, operation="ack") as cur:
            cur.execute(
                f"DELETE FROM {self.table} WHERE id = %s AND receive_count = %s",
                (message_id, receive_count)
            )
            deleted = cur.rowcount > 0

        if not deleted:
            logger.warning(f"Ack for message {message_id} ignored: lease expired or already acknowledged")
        return deleted

    def _reschedule(self, message_id: int, receive_count: int, delay_seconds: float) -> bool:
        with self.db.cursor(table=self.table, operation="retry") as cur:
            cur.execute(
                f"UPDATE {self.table} SET visible_at = now() + make_interval(secs => %s) "
                f"WHERE id = %s AND receive_count = %s",
                (max(0.0, delay_seconds), message_id, receive_count)
            )
            return cur.rowcount > 0
