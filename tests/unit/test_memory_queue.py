"""
Unit tests for the in-memory sync queue.
"""

import pytest

from snapsync.exceptions import MessageFormatError, QueueError
from snapsync.models import Operation, SyncIntent


def _intent(record_id, operation=Operation.INSERT):
    payload = None if operation == Operation.DELETE else {"id": record_id, "name": "n", "email": "e"}
    return SyncIntent(record_id, operation, payload)


class TestInMemorySyncQueue:
    """Test visibility, leases and acknowledgement."""

    @pytest.mark.asyncio
    async def test_send_and_receive(self, queue):
        """Test that messages are delivered in send order."""
        await queue.send(_intent(1))
        await queue.send(_intent(2))

        messages = await queue.receive_batch(10)

        assert [m.intent.record_id for m in messages] == [1, 2]
        assert all(m.receive_count == 1 for m in messages)

    @pytest.mark.asyncio
    async def test_batch_size_limit(self, queue):
        """Test max_messages."""
        for i in range(5):
            await queue.send(_intent(i + 1))

        assert len(await queue.receive_batch(3)) == 3
        assert len(await queue.receive_batch(3)) == 2

    @pytest.mark.asyncio
    async def test_delayed_message_invisible_until_due(self, queue, clock):
        """Test per-message visibility delay."""
        await queue.send(_intent(1), delay_seconds=10)

        assert await queue.receive_batch(10) == []
        clock.advance(10)
        assert len(await queue.receive_batch(10)) == 1

    @pytest.mark.asyncio
    async def test_ack_removes_message(self, queue, clock):
        """Test that acknowledged messages are never redelivered."""
        await queue.send(_intent(1))
        (message,) = await queue.receive_batch(10)

        assert await message.ack() is True
        clock.advance(60)
        assert await queue.receive_batch(10) == []
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_unacked_message_redelivered_after_lease(self, queue, clock):
        """Test at-least-once redelivery after the visibility timeout."""
        await queue.send(_intent(1))
        (first,) = await queue.receive_batch(10)

        clock.advance(29)
        assert await queue.receive_batch(10) == []

        clock.advance(1)
        (second,) = await queue.receive_batch(10)
        assert second.receive_count == 2
        assert second.intent.record_id == 1

    @pytest.mark.asyncio
    async def test_stale_ack_is_ignored(self, queue, clock):
        """Test that an ack from an expired lease does not delete the redelivery."""
        await queue.send(_intent(1))
        (first,) = await queue.receive_batch(10)
        clock.advance(30)
        (second,) = await queue.receive_batch(10)

        assert await first.ack() is False
        assert len(queue) == 1
        assert await second.ack() is True

    @pytest.mark.asyncio
    async def test_retry_releases_with_delay(self, queue, clock):
        """Test releasing a message with a delay."""
        await queue.send(_intent(1))
        (message,) = await queue.receive_batch(10)

        assert await message.retry(5) is True
        assert await queue.receive_batch(10) == []
        clock.advance(5)
        assert len(await queue.receive_batch(10)) == 1

    @pytest.mark.asyncio
    async def test_body_is_json_copy(self, queue):
        """Test that the queued body is detached from the intent payload."""
        payload = {"id": 1, "name": "n", "email": "e"}
        await queue.send(SyncIntent(1, Operation.INSERT, payload))
        payload["name"] = "changed"

        (message,) = await queue.receive_batch(10)
        assert message.body["data"]["name"] == "n"

    @pytest.mark.asyncio
    async def test_non_serializable_payload_rejected(self, queue):
        """Test that unserializable payloads fail at send time."""
        with pytest.raises(QueueError):
            await queue.send(SyncIntent(1, Operation.INSERT, {"id": 1, "blob": object()}))

    @pytest.mark.asyncio
    async def test_malformed_body_raises_on_intent(self, queue):
        """Test lazy decoding of a broken body."""
        await queue.send(_intent(1))
        (message,) = await queue.receive_batch(10)
        message.body["operation"] = "DEBUG"
        message._intent = None

        with pytest.raises(MessageFormatError):
            message.intent

    @pytest.mark.asyncio
    async def test_closed_queue_rejects_send(self, queue):
        """Test close()."""
        await queue.close()

        with pytest.raises(QueueError):
            await queue.send(_intent(1))

    @pytest.mark.asyncio
    async def test_receive_waits_for_send(self):
        """Test that a waiting receive wakes up on send."""
        import asyncio
        from snapsync.queue.memory import InMemorySyncQueue

        queue = InMemorySyncQueue()

        async def later():
            await asyncio.sleep(0.05)
            await queue.send(_intent(9))

        task = asyncio.create_task(later())
        messages = await queue.receive_batch(10, wait_seconds=2)
        await task

        assert [m.intent.record_id for m in messages] == [9]
