"""
The sync pipeline: change detection, the queue consumer and the operator
service built on them.
"""

from snapsync.sync.consumer import ApplyOutcome, BatchResult, SyncConsumer
from snapsync.sync.poller import ChangeDetector, Poller, PollResult
from snapsync.sync.retry import RetryPolicy
from snapsync.sync.service import SyncService
from snapsync.sync.validation import PayloadValidator

__all__ = [
    "ApplyOutcome",
    "BatchResult",
    "SyncConsumer",
    "ChangeDetector",
    "Poller",
    "PollResult",
    "RetryPolicy",
    "SyncService",
    "PayloadValidator",
]
