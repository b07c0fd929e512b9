"""
Correlation ID Utility for snapsync

Correlation IDs tie together the log lines of one poll cycle or one applied
queue message, including the lines written from worker threads.
"""

import uuid
import contextvars
from typing import Optional
import logging

logger = logging.getLogger(__name__)

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)


def generate_correlation_id(prefix: Optional[str] = None) -> str:
    """
    Generate a new correlation ID.

    Args:
        prefix: Optional label prepended to the UUID (e.g. "poll", "apply")

    Returns:
        UUID4 string, or "<prefix>-<uuid>" when a prefix is given
    """
    correlation_id = str(uuid.uuid4())
    if prefix:
        correlation_id = f"{prefix}-{correlation_id}"
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id.get()


class CorrelationContext:
    """
    Context manager for correlation ID management.

    Sets a correlation ID for the duration of the block and restores the
    previous one on exit.

    Example:
        with CorrelationContext(prefix="poll") as cid:
            logger.info("cycle started")
    """

    def __init__(self, correlation_id: Optional[str] = None, prefix: Optional[str] = None):
        """
        Initialize correlation context.

        Args:
            correlation_id: Correlation ID to use; generated when omitted
            prefix: Prefix for a generated ID
        """
        self.correlation_id = correlation_id
        self.prefix = prefix
        self._token = None

    def __enter__(self) -> str:
        if not self.correlation_id:
            self.correlation_id = generate_correlation_id(self.prefix)

        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)
        self._token = None


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds `correlation_id` to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or "N/A"
        return True


def setup_correlation_logging(handler: logging.Handler) -> None:
    """
    Configure a handler to include correlation IDs.

    Args:
        handler: Handler whose records should carry the correlation ID
    """
    handler.addFilter(CorrelationIdFilter())
