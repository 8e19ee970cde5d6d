"""Domain model for marketplace listing reconciliation."""

from __future__ import annotations

from .audit import ChangeEvent, ImportBatch, ReconciliationPass, RecordErrorEntry
from .candidate import DEFAULT_SOURCE_STRATEGY, CandidateRecord
from .entity import CanonicalEntity, FieldValue, new_id, utcnow
from .enums import (
    BatchStatus,
    ChangeAction,
    IdentityKind,
    ListingField,
    PassStatus,
    RecordErrorKind,
)

__all__ = [
    "DEFAULT_SOURCE_STRATEGY",
    "BatchStatus",
    "CandidateRecord",
    "CanonicalEntity",
    "ChangeAction",
    "ChangeEvent",
    "FieldValue",
    "IdentityKind",
    "ImportBatch",
    "ListingField",
    "PassStatus",
    "ReconciliationPass",
    "RecordErrorEntry",
    "RecordErrorKind",
    "new_id",
    "utcnow",
]
