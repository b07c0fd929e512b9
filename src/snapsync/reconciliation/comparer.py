"""
Row Comparer for snapsync

Compares source rows with the JSON documents stored in the snapshot table.
Source rows are normalized to a canonical JSON-compatible form first, so the
comparison is structural: key order never matters, while type differences
(true vs 1, 1 vs 1.0) always do.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

logger = logging.getLogger(__name__)


class RowComparer:
    """
    Compares source rows with snapshot documents.

    The same canonical form is used when payloads are built by the change
    detector and when documents are compared, so a document written from a
    payload always compares equal to the row it came from.
    """

    def __init__(self):
        """Initialize the row comparer."""
        logger.debug("Initialized RowComparer")

    def to_document(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build the canonical document for a source row.

        Handles:
        - datetime → ISO-8601 string in UTC (naive values assumed UTC)
        - date → ISO-8601 string
        - Decimal → string
        - UUID → string
        - bytes → hex string
        - nested lists and dicts

        Args:
            row: Source row dictionary

        Returns:
            JSON-compatible dictionary
        """
        return {str(key): self._normalize_value(value) for key, value in row.items()}

    def canonical_json(self, value: Any) -> str:
        """
        Serialize a value deterministically.

        Args:
            value: Document or row

        Returns:
            JSON string with sorted keys and compact separators
        """
        return json.dumps(
            self._normalize_value(value),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )

    def documents_equal(
        self,
        document: Optional[Any],
        row: Dict[str, Any],
        ignore_fields: Optional[Iterable[str]] = None
    ) -> bool:
        """
        Compare a stored document with the current source row.

        Args:
            document: Document from the snapshot table (None when soft deleted)
            row: Source row
            ignore_fields: Top-level fields excluded from the comparison

        Returns:
            True if the document equals the canonical form of the row
        """
        if document is None or not isinstance(document, dict):
            return False

        expected = self.to_document(row)
        actual = document

        if ignore_fields:
            ignored = set(ignore_fields)
            expected = {k: v for k, v in expected.items() if k not in ignored}
            actual = {k: v for k, v in actual.items() if k not in ignored}

        return self.canonical_json(actual) == self.canonical_json(expected)

    def compare_documents_detailed(
        self,
        document: Optional[Any],
        row: Dict[str, Any],
        ignore_fields: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """
        Compare a document with a source row field by field.

        Args:
            document: Document from the snapshot table
            row: Source row
            ignore_fields: Top-level fields to ignore

        Returns:
            Dictionary with:
            - is_equal: bool
            - matching_fields: List[str]
            - differing_fields: List[str]
            - differences: Dict[str, Dict[str, Any]]
        """
        expected = self.to_document(row)
        actual = document if isinstance(document, dict) else {}
        ignored = set(ignore_fields or [])

        all_fields = (set(expected.keys()) | set(actual.keys())) - ignored

        matching_fields = []
        differing_fields = []
        differences = {}

        for field_name in all_fields:
            source_value = expected.get(field_name)
            target_value = actual.get(field_name)

            if (
                field_name in expected
                and field_name in actual
                and self.canonical_json(source_value) == self.canonical_json(target_value)
            ):
                matching_fields.append(field_name)
            else:
                differing_fields.append(field_name)
                differences[field_name] = {
                    "source": source_value,
                    "target": target_value
                }

        return {
            "is_equal": document is not None and len(differing_fields) == 0,
            "matching_fields": sorted(matching_fields),
            "differing_fields": sorted(differing_fields),
            "differences": differences
        }

    def _normalize_value(self, value: Any) -> Any:
        """
        Normalize a single value to its JSON-compatible form.

        Args:
            value: Value to normalize

        Returns:
            Normalized value
        """
        if value is None or isinstance(value, (bool, int, float, str)):
            return value

        if isinstance(value, UUID):
            return str(value)

        if isinstance(value, Decimal):
            return str(value)

        # datetime is a subclass of date, check it first
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc).isoformat()
            return value.astimezone(timezone.utc).isoformat()

        if isinstance(value, date):
            return value.isoformat()

        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).hex()

        if isinstance(value, (list, tuple)):
            return [self._normalize_value(item) for item in value]

        if isinstance(value, dict):
            return {str(k): self._normalize_value(v) for k, v in value.items()}

        return str(value)
