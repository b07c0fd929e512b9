"""
Logging setup for snapsync.

Console output is human readable. With JSON logging enabled, records are also
emitted as one JSON object per line for log shippers.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from snapsync.utils.correlation import setup_correlation_logging

# Record attributes copied into JSON output when present
_EXTRA_FIELDS = ("record_id", "operation", "status", "retry_count")


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with correlation ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', None) or 'N/A',
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)
        if hasattr(record, 'duration'):
            log_data['duration_seconds'] = record.duration

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: Union[str, int] = "INFO",
    json_logging: bool = False,
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Configure handlers on the snapsync (or the given) logger.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Log level name or number
        json_logging: Emit structured JSON lines instead of console text
        logger_name: Logger to configure (defaults to "snapsync")

    Returns:
        The configured logger
    """
    target = logging.getLogger(logger_name or "snapsync")
    target.setLevel(level.upper() if isinstance(level, str) else level)

    for handler in list(target.handlers):
        if getattr(handler, "_snapsync_handler", False):
            target.removeHandler(handler)

    handler = logging.StreamHandler()
    if json_logging:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s %(name)s [%(correlation_id)s] - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
    handler._snapsync_handler = True
    setup_correlation_logging(handler)

    target.addHandler(handler)
    target.propagate = False

    return target
