"""
Exceptions for the snapsync pipeline.
"""


class SnapSyncError(Exception):
    """Base class for all snapsync errors."""
    pass


class ConfigurationError(SnapSyncError):
    """Raised when settings are missing or invalid."""
    pass


class StorageError(SnapSyncError):
    """Raised when a storage operation fails."""

    def __init__(self, message: str, table: str = None, operation: str = None):
        super().__init__(message)
        self.table = table
        self.operation = operation


class QueueError(SnapSyncError):
    """Raised when the sync queue cannot send or receive messages."""
    pass


class MessageFormatError(SnapSyncError):
    """Raised when a queue message cannot be decoded into a sync intent."""
    pass


class PayloadValidationError(SnapSyncError):
    """Raised when an INSERT/UPDATE payload is not a well-formed record."""

    def __init__(self, message: str, record_id: int = None, missing_fields=None):
        super().__init__(message)
        self.record_id = record_id
        self.missing_fields = list(missing_fields or [])


class InvalidRequestError(SnapSyncError):
    """Raised when an operator request has out-of-range or unknown arguments."""
    pass
