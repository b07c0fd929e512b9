"""
Queue interfaces for sync intents.

Delivery is at-least-once: a received message stays leased until it is
acknowledged, and becomes visible again if the lease runs out first.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from snapsync.models import SyncIntent


class QueueMessage(ABC):
    """One delivery of a queued sync intent."""

    def __init__(self, message_id: Any, body: Dict[str, Any], receive_count: int):
        self.message_id = message_id
        self.body = body
        self.receive_count = receive_count
        self._intent: Optional[SyncIntent] = None

    @property
    def intent(self) -> SyncIntent:
        """
        The decoded intent.

        Raises:
            MessageFormatError: If the body is not a valid sync message
        """
        if self._intent is None:
            self._intent = SyncIntent.from_message(self.body)
        return self._intent

    @abstractmethod
    async def ack(self) -> bool:
        """Remove the message from the queue. Returns False if the lease was lost."""

    @abstractmethod
    async def retry(self, delay_seconds: float = 0) -> bool:
        """Release the lease and make the message visible again after a delay."""

    def __repr__(self):
        return f"{type(self).__name__}(id={self.message_id!r}, receive_count={self.receive_count})"


class SyncQueue(ABC):
    """Queue carrying sync intents from the change detector to the consumer."""

    @abstractmethod
    async def send(self, intent: SyncIntent, delay_seconds: float = 0) -> None:
        """
        Enqueue an intent.

        Args:
            intent: Intent to enqueue
            delay_seconds: Time before the message becomes visible

        Raises:
            QueueError: If the message cannot be enqueued
        """

    @abstractmethod
    async def receive_batch(self, max_messages: int = 10, wait_seconds: float = 0) -> List[QueueMessage]:
        """
        Lease up to max_messages visible messages.

        Waits up to wait_seconds for at least one message to become visible.

        Raises:
            QueueError: If the queue cannot be read
        """

    async def close(self) -> None:
        """Release queue resources."""
