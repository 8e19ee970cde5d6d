"""Content fingerprints over canonical field mappings.

Mappings that compare equal hash equal: integral floats serialize as integers
(``50000.0`` as ``50000``), while booleans stay booleans.
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from marketrecon.domain.model import FieldValue

FINGERPRINT_LENGTH = 64


def _canonical_value(value: FieldValue) -> FieldValue:
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return value


def canonical_serialization(fields: Mapping[str, FieldValue]) -> str:
    """Serialize ``fields`` independently of insertion order and numeric type."""

    return json.dumps(
        {name: _canonical_value(value) for name, value in fields.items()},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def content_hash(fields: Mapping[str, FieldValue]) -> str:
    """Return the SHA-256 hex digest of the canonical serialization."""

    payload = canonical_serialization(fields).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()
