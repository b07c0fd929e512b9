"""
Sync intent queues.

Usage:
    from snapsync.queue import InMemorySyncQueue

    queue = InMemorySyncQueue(visibility_timeout=30)
    await queue.send(intent)
    for message in await queue.receive_batch(max_messages=10):
        ...
        await message.ack()
"""

from snapsync.queue.base import QueueMessage, SyncQueue
from snapsync.queue.memory import InMemorySyncQueue
from snapsync.queue.postgres import PostgresSyncQueue

__all__ = ["QueueMessage", "SyncQueue", "InMemorySyncQueue", "PostgresSyncQueue"]
