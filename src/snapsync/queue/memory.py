"""
In-process sync queue.

Used for local runs without a queue table and throughout the test suite. The
clock is injectable so visibility delays and lease expiry can be driven
without sleeping.
"""

import asyncio
import itertools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from snapsync.exceptions import QueueError
from snapsync.models import SyncIntent
from snapsync.queue.base import QueueMessage, SyncQueue

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    body: Dict[str, Any]
    visible_at: float
    receive_count: int = 0
    lease: int = 0


class InMemoryMessage(QueueMessage):
    """Delivery handle for InMemorySyncQueue."""

    def __init__(self, queue: "InMemorySyncQueue", message_id: int, body: Dict[str, Any], receive_count: int, lease: int):
        super().__init__(message_id, body, receive_count)
        self._queue = queue
        self._lease = lease

    async def ack(self) -> bool:
        return self._queue._ack(self.message_id, self._lease)

    async def retry(self, delay_seconds: float = 0) -> bool:
        return self._queue._release(self.message_id, self._lease, delay_seconds)


class InMemorySyncQueue(SyncQueue):
    """
    asyncio queue with per-message visibility delay and leases.

    Args:
        visibility_timeout: Seconds a received message stays invisible before redelivery
        clock: Monotonic time source in seconds
    """

    def __init__(self, visibility_timeout: float = 30.0, clock: Optional[Callable[[], float]] = None):
        self.visibility_timeout = visibility_timeout
        self.clock = clock or time.monotonic
        self._entries: Dict[int, _Entry] = {}
        self._ids = itertools.count(1)
        self._leases = itertools.count(1)
        self._available = asyncio.Event()
        self._closed = False

    async def send(self, intent: SyncIntent, delay_seconds: float = 0) -> None:
        if self._closed:
            raise QueueError("Queue is closed")

        try:
            # same constraint as a real broker: the body must survive JSON
            body = json.loads(json.dumps(intent.to_message()))
        except (TypeError, ValueError) as e:
            raise QueueError(f"Message for record {intent.record_id} is not JSON serializable: {e}") from e

        message_id = next(self._ids)
        self._entries[message_id] = _Entry(body=body, visible_at=self.clock() + max(0.0, delay_seconds))
        self._available.set()
        logger.debug(f"Queued {intent.operation.value} for record {intent.record_id} (delay={delay_seconds}s)")

    async def receive_batch(self, max_messages: int = 10, wait_seconds: float = 0) -> List[QueueMessage]:
        if self._closed:
            raise QueueError("Queue is closed")

        deadline = time.monotonic() + max(0.0, wait_seconds)

        while True:
            messages = self._lease_visible(max_messages)
            if messages or self._closed:
                return messages

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []

            next_visible = self._seconds_until_next_visible()
            timeout = remaining if next_visible is None else min(remaining, next_visible)

            self._available.clear()
            try:
                await asyncio.wait_for(self._available.wait(), timeout=max(timeout, 0.01))
            except asyncio.TimeoutError:
                pass

    async def close(self) -> None:
        self._closed = True
        self._available.set()

    def __len__(self) -> int:
        """Number of messages not yet acknowledged (visible, delayed or leased)."""
        return len(self._entries)

    def bodies(self) -> List[Dict[str, Any]]:
        """Bodies of all unacknowledged messages in send order."""
        return [self._entries[key].body for key in sorted(self._entries)]

    def _lease_visible(self, max_messages: int) -> List[QueueMessage]:
        now = self.clock()
        visible = sorted(
            (entry.visible_at, message_id)
            for message_id, entry in self._entries.items()
            if entry.visible_at <= now
        )

        messages = []
        for _, message_id in visible[:max_messages]:
            entry = self._entries[message_id]
            entry.receive_count += 1
            entry.lease = next(self._leases)
            entry.visible_at = now + self.visibility_timeout
            messages.append(InMemoryMessage(self, message_id, entry.body, entry.receive_count, entry.lease))

        return messages

    def _seconds_until_next_visible(self) -> Optional[float]:
        if not self._entries:
            return None
        return max(0.0, min(entry.visible_at for entry in self._entries.values()) - self.clock())

    def _ack(self, message_id: int, lease: int) -> bool:
        entry = self._entries.get(message_id)
        if entry is None or entry.lease != lease:
            logger.warning(f"Ack for message {message_id} ignored: lease expired or already acknowledged")
            return False
        del self._entries[message_id]
        return True

    def _release(self, message_id: int, lease: int, delay_seconds: float) -> bool:
        entry = self._entries.get(message_id)
        if entry is None or entry.lease != lease:
            return False
        entry.lease = 0
        entry.visible_at = self.clock() + max(0.0, delay_seconds)
        self._available.set()
        return True
