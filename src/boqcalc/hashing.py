"""Canonical JSON serialization and SHA-256 hashing.

Used for assembly formula hashes and quantity reproducibility hashes, so the
same inputs always hash to the same value regardless of dict ordering.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def canonical_json_for_hash(obj: Any) -> str:
    """Serialize object to canonical JSON for hashing.

    Rules:
    - All keys sorted alphabetically (recursive)
    - Decimal values serialized as strings
    - Floats serialized with repr (shortest round-tripping form)
    - Enums by value, datetimes as ISO 8601
    - No whitespace

    Args:
        obj: Object to serialize.

    Returns:
        Canonical JSON string.
    """

    def normalize(value: Any) -> Any:
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, dict):
            items = sorted(value.items(), key=lambda item: str(item[0]))
            return {str(k): normalize(v) for k, v in items}
        if isinstance(value, list | tuple):
            return [normalize(item) for item in value]
        return value

    normalized = normalize(obj)
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"), default=str)


def compute_sha256(data: str) -> str:
    """Compute SHA256 hash of a string.

    Args:
        data: String to hash.

    Returns:
        Lowercase hexadecimal hash string.
    """
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
