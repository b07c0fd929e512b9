"""
Payload validation for INSERT and UPDATE intents.
"""

import copy
import json
import logging
from typing import Any, Dict, Iterable, Optional

from snapsync.exceptions import PayloadValidationError
from snapsync.models import Operation, SyncIntent

logger = logging.getLogger(__name__)


class PayloadValidator:
    """
    Checks that an intent payload is a complete record before it is written.

    A payload is valid when it is a JSON object, every required field is
    present with a non-empty value, the key field matches the intent's
    record id and the whole object is JSON serializable.
    """

    def __init__(self, required_fields: Iterable[str] = ("id", "name", "email"), key_field: str = "id"):
        self.required_fields = tuple(required_fields)
        self.key_field = key_field

    def validate(self, intent: SyncIntent) -> Optional[Dict[str, Any]]:
        """
        Validate an intent payload.

        Args:
            intent: Intent to check

        Returns:
            A deep copy of the payload, safe to store (None for DELETE)

        Raises:
            PayloadValidationError: If the payload is not a valid record
        """
        if intent.operation == Operation.DELETE:
            return None

        payload = intent.payload
        if payload is None or not isinstance(payload, dict):
            raise PayloadValidationError(
                f"{intent.operation.value} payload for record {intent.record_id} must be an object, "
                f"got {type(payload).__name__}",
                record_id=intent.record_id
            )

        missing = [name for name in self.required_fields if self._is_empty(payload.get(name))]
        if missing:
            raise PayloadValidationError(
                f"Payload for record {intent.record_id} is missing required fields: {', '.join(missing)}",
                record_id=intent.record_id,
                missing_fields=missing
            )

        key = payload.get(self.key_field)
        if key is not None and (isinstance(key, bool) or key != intent.record_id):
            raise PayloadValidationError(
                f"Payload {self.key_field}={key!r} does not match record id {intent.record_id}",
                record_id=intent.record_id
            )

        try:
            json.dumps(payload, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise PayloadValidationError(
                f"Payload for record {intent.record_id} is not JSON serializable: {e}",
                record_id=intent.record_id
            ) from e

        return copy.deepcopy(payload)

    @staticmethod
    def _is_empty(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, str) and not value.strip():
            return True
        return False
