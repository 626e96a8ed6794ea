"""
Extractor: turns one product payload into the subcategory keys to count.

extract() is pure and never raises for bad input; failures come back as an
ExtractionError inside the result so the caller decides what to do.
"""

import json
from dataclasses import dataclass, field
from typing import List, Optional

from category_mr.common.errors import ExtractionError, ExtractionErrorKind

CATEGORY_FIELD = "category"


@dataclass(frozen=True)
class ExtractionResult:
    """Group keys for one record, or the reason there are none"""
    keys: List[str] = field(default_factory=list)
    error: Optional[ExtractionError] = None
    matched: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _failure(kind: ExtractionErrorKind, message: str) -> ExtractionResult:
    return ExtractionResult(error=ExtractionError(kind, message))


def extract(payload: bytes, filter_value: str) -> ExtractionResult:
    """
    Extract subcategory keys from a product payload.

    Args:
        payload: Raw JSON bytes of the product document
        filter_value: Top-level category a document must have to be counted

    Returns:
        ExtractionResult. For a matching document, keys are the category
        path after its first element, in order and untrimmed. A document in
        another top-level category yields no keys and no error.
    """
    try:
        text = payload.decode('utf-8') if isinstance(payload, (bytes, bytearray)) else payload
        document = json.loads(text)
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        return _failure(ExtractionErrorKind.MALFORMED_PAYLOAD, str(e))

    if not isinstance(document, dict):
        return _failure(ExtractionErrorKind.MALFORMED_PAYLOAD,
                        f"expected a JSON object, got {type(document).__name__}")

    if CATEGORY_FIELD not in document:
        return _failure(ExtractionErrorKind.MISSING_FIELD, f"no '{CATEGORY_FIELD}' field")

    path = document[CATEGORY_FIELD]
    if not isinstance(path, list):
        return _failure(ExtractionErrorKind.MISSING_FIELD,
                        f"'{CATEGORY_FIELD}' is {type(path).__name__}, expected a list")
    if not all(isinstance(item, str) for item in path):
        return _failure(ExtractionErrorKind.MISSING_FIELD,
                        f"'{CATEGORY_FIELD}' contains non-string entries")
    if not path:
        return _failure(ExtractionErrorKind.EMPTY_CATEGORY, f"'{CATEGORY_FIELD}' is empty")

    # Only the top-level entry is trimmed before comparing
    if path[0].strip() != filter_value.strip():
        return ExtractionResult()

    return ExtractionResult(keys=list(path[1:]), matched=True)
