"""
Sync Consumer for snapsync

Applies queued sync intents to the snapshot table with at-least-once
semantics:
- Every attempt is recorded in the audit log
- Transient failures are re-queued with exponential backoff
- Exhausted or invalid intents are marked failed and dropped
- A message is acknowledged only after its bookkeeping is written, so a
  crash or a bookkeeping error leads to redelivery instead of loss
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from snapsync.exceptions import MessageFormatError, PayloadValidationError
from snapsync.models import AuditEntry, AuditStatus, Operation, SyncIntent, utcnow
from snapsync.monitoring.metrics import ConsumerMetrics
from snapsync.queue.base import QueueMessage, SyncQueue
from snapsync.sync.retry import RetryPolicy
from snapsync.sync.validation import PayloadValidator
from snapsync.utils.correlation import CorrelationContext

logger = logging.getLogger(__name__)

IDLE_SLEEP_SECONDS = 0.5


class ApplyOutcome(str, Enum):
    """Result of handling one message."""
    APPLIED = "applied"
    RETRIED = "retried"
    FAILED = "failed"


@dataclass
class BatchResult:
    """Counts for one processed batch."""

    applied: int = 0
    retried: int = 0
    failed: int = 0
    unacked: int = 0

    @property
    def total(self) -> int:
        return self.applied + self.retried + self.failed + self.unacked

    def add(self, outcome: ApplyOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> Dict[str, int]:
        return {
            "applied": self.applied,
            "retried": self.retried,
            "failed": self.failed,
            "unacked": self.unacked,
        }


class SyncConsumer:
    """
    Applies sync intents from the queue to the snapshot store.

    Example:
        consumer = SyncConsumer(snapshots, audit, queue)
        await consumer.start()
        ...
        await consumer.stop()
    """

    def __init__(
        self,
        snapshots,
        audit,
        queue: SyncQueue,
        retry_policy: Optional[RetryPolicy] = None,
        validator: Optional[PayloadValidator] = None,
        metrics: Optional[ConsumerMetrics] = None,
        retry_validation_errors: bool = False,
        batch_size: int = 10,
        wait_seconds: float = 20.0
    ):
        """
        Initialize the consumer.

        Args:
            snapshots: SnapshotStore (or compatible)
            audit: AuditLog (or compatible)
            queue: Queue to consume and to re-queue retries on
            retry_policy: Backoff schedule (defaults: 5 retries, 5s base, 300s cap)
            validator: Payload validator for INSERT/UPDATE
            metrics: Consumer metrics
            retry_validation_errors: Treat validation failures as transient
            batch_size: Messages per receive
            wait_seconds: Long-poll time per receive
        """
        self.snapshots = snapshots
        self.audit = audit
        self.queue = queue
        self.retry_policy = retry_policy or RetryPolicy()
        self.validator = validator or PayloadValidator()
        self.metrics = metrics
        self.retry_validation_errors = retry_validation_errors
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds

        self.is_running = False
        self._in_batch = False
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    async def apply(self, message: QueueMessage) -> ApplyOutcome:
        """
        Handle one delivered message.

        Returns:
            The outcome; the message has been acknowledged in every case

        Raises:
            Exception: If writing the audit log or talking to the queue failed.
                The message is then left unacknowledged and will be redelivered.
        """
        with CorrelationContext(prefix="apply"):
            try:
                intent = message.intent
            except MessageFormatError as e:
                return await self._drop_malformed(message, e)

            log_extra = {"record_id": intent.record_id, "operation": intent.operation.value}
            logger.debug(
                f"Processing {intent.operation.value} for record {intent.record_id} "
                f"(attempt {intent.retry_count + 1})",
                extra=log_extra
            )

            start = time.monotonic()
            try:
                await self._apply_intent(intent)
            except Exception as e:
                return await self._handle_failure(message, intent, e, start)

            duration = time.monotonic() - start
            await self.audit.append(AuditEntry(
                record_id=intent.record_id,
                operation=intent.operation.value,
                status=AuditStatus.SUCCESS,
                metadata={
                    "retryCount": intent.retry_count,
                    "processingTimeMs": round(duration * 1000, 3),
                },
            ))
            await message.ack()

            if self.metrics:
                self.metrics.record_apply(intent.operation.value, ApplyOutcome.APPLIED.value, duration)
            logger.info(f"Synced {intent.operation.value} for record {intent.record_id}", extra=log_extra)
            return ApplyOutcome.APPLIED

    async def process_batch(self, messages: List[QueueMessage]) -> BatchResult:
        """
        Handle a batch, one message at a time.

        A message whose bookkeeping fails is counted as unacked and does not
        affect the rest of the batch.
        """
        result = BatchResult()

        for message in messages:
            try:
                result.add(await self.apply(message))
            except Exception as e:
                result.unacked += 1
                logger.error(f"Message {message.message_id} left for redelivery: {e}", exc_info=True)

        if self.metrics:
            self.metrics.batches_processed_total.inc()
        if messages:
            logger.info(f"Processed batch of {len(messages)} messages: {result.to_dict()}")
        return result

    async def _apply_intent(self, intent: SyncIntent) -> None:
        if intent.operation == Operation.DELETE:
            if not await self.snapshots.mark_deleted(intent.record_id):
                logger.debug(f"No snapshot for deleted record {intent.record_id}, nothing to do")
            return

        document = self.validator.validate(intent)
        await self.snapshots.upsert(intent.record_id, document)

    async def _handle_failure(
        self,
        message: QueueMessage,
        intent: SyncIntent,
        error: Exception,
        start: float
    ) -> ApplyOutcome:
        duration = time.monotonic() - start
        operation = intent.operation.value
        error_type = type(error).__name__
        processing_ms = round(duration * 1000, 3)
        is_validation = isinstance(error, PayloadValidationError)
        retryable = not is_validation or self.retry_validation_errors

        if retryable and self.retry_policy.should_retry(intent.retry_count):
            delay = self.retry_policy.delay_for(intent.retry_count)
            next_count = intent.retry_count + 1
            next_retry_at = utcnow() + timedelta(seconds=delay)

            logger.warning(
                f"Failed to sync record {intent.record_id}: {error}. "
                f"Retry {next_count}/{self.retry_policy.max_retries} in {delay:g}s",
                extra={"record_id": intent.record_id, "operation": operation, "retry_count": next_count}
            )

            await self.audit.append(AuditEntry(
                record_id=intent.record_id,
                operation=operation,
                status=AuditStatus.FAILED,
                error_details=str(error),
                metadata={
                    "retryCount": intent.retry_count,
                    "errorType": error_type,
                    "processingTimeMs": processing_ms,
                },
            ))
            await self.audit.append(AuditEntry(
                record_id=intent.record_id,
                operation=operation,
                status=AuditStatus.RETRY,
                error_details=(
                    f"Retry {next_count}/{self.retry_policy.max_retries} "
                    f"scheduled in {delay:g}s: {error}"
                ),
                metadata={
                    "retryCount": next_count,
                    "delaySeconds": delay,
                    "nextRetryAt": next_retry_at.isoformat(),
                },
            ))
            await self.queue.send(intent.next_attempt(), delay_seconds=delay)
            await message.ack()

            if self.metrics:
                self.metrics.record_apply(operation, ApplyOutcome.RETRIED.value, duration)
                self.metrics.record_retry(operation, delay)
            return ApplyOutcome.RETRIED

        if is_validation and not self.retry_validation_errors:
            reason = "validation"
            details = f"Invalid payload: {error}"
        else:
            reason = "exhausted"
            details = f"Max retries ({self.retry_policy.max_retries}) exceeded. Last error: {error}"

        logger.error(
            f"Giving up on {operation} for record {intent.record_id}: {details}",
            extra={"record_id": intent.record_id, "operation": operation, "retry_count": intent.retry_count}
        )

        await self.snapshots.mark_failed(intent.record_id)
        await self.audit.append(AuditEntry(
            record_id=intent.record_id,
            operation=operation,
            status=AuditStatus.FAILED,
            error_details=details,
            metadata={
                "final": True,
                "retryCount": intent.retry_count,
                "errorType": error_type,
                "processingTimeMs": processing_ms,
            },
        ))
        await message.ack()

        if self.metrics:
            self.metrics.record_apply(operation, ApplyOutcome.FAILED.value, duration)
            self.metrics.record_permanent_failure(operation, reason)
        return ApplyOutcome.FAILED

    async def _drop_malformed(self, message: QueueMessage, error: MessageFormatError) -> ApplyOutcome:
        body: Any = message.body
        record_id = body.get("recordId") if isinstance(body, dict) else None
        operation = body.get("operation") if isinstance(body, dict) else None
        operation = operation if isinstance(operation, str) and operation else "UNKNOWN"

        logger.error(f"Dropping malformed message {message.message_id}: {error}")

        if isinstance(record_id, int) and not isinstance(record_id, bool):
            await self.audit.append(AuditEntry(
                record_id=record_id,
                operation=operation,
                status=AuditStatus.FAILED,
                error_details=f"Malformed message: {error}",
                metadata={"final": True, "errorType": type(error).__name__},
            ))
        await message.ack()

        if self.metrics:
            self.metrics.record_permanent_failure(operation, "malformed")
        return ApplyOutcome.FAILED

    async def start(self) -> None:
        """Start consuming in the background (no-op if already running)."""
        if self.is_running:
            return

        self.is_running = True
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Consumer started (batch_size={self.batch_size}, wait={self.wait_seconds}s)")

    async def stop(self) -> None:
        """
        Stop consuming.

        A batch in progress is finished first; a pending receive is cancelled.
        """
        if not self.is_running:
            return

        self.is_running = False
        self._stopping.set()

        if self._task is not None:
            if not self._in_batch:
                self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Consumer stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                messages = await self.queue.receive_batch(self.batch_size, self.wait_seconds)
            except Exception as e:
                logger.error(f"Failed to receive messages: {e}")
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stopping.wait(), timeout=max(self.wait_seconds, 1.0))
                continue

            if not messages:
                if self.wait_seconds <= 0:
                    # receive does not block, avoid spinning
                    with contextlib.suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(self._stopping.wait(), timeout=IDLE_SLEEP_SECONDS)
                continue

            self._in_batch = True
            try:
                await self.process_batch(messages)
            finally:
                self._in_batch = False
