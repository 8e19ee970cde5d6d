"""Incremental reconciliation of marketplace listing snapshots.

Flow per candidate record:
1) normalize identity hints
2) resolve against the persisted identity index
3) merge fields by confidence and recompute derived fields
4) emit change events and persist them with the batch

Passes group batches; completing a pass soft-deletes entities that were missed in
too many consecutive passes.
"""

from __future__ import annotations

from .audit_log import AuditLog, ReplayedEntity, action_counts, replay_events, verify_replay
from .contracts import BatchResult, CancellationToken, PassSummary, ProgressCounters
from .detect import ChangeDetector, Detection, DetectionOutcome, change_percentage
from .engine import BatchPersistenceManager
from .errors import (
    BatchCancelledError,
    ConflictingIdentity,
    InvariantViolation,
    MalformedRecord,
    PassStateError,
    ReconciliationError,
    RecordError,
    StorageError,
    TransientStorageError,
)
from .hashing import canonical_serialization, content_hash
from .insights import NotableChange, NotableChanges, summarize_notable_changes
from .merge import DEFAULT_DERIVED_FIELDS, DerivedField, FieldChange, FieldMerger, MergeResult
from .normalize import IdentityHints, identity_hints, normalize_url
from .resolve import IdentityResolver, Resolution, ResolutionStatus

__all__ = [
    "DEFAULT_DERIVED_FIELDS",
    "AuditLog",
    "BatchCancelledError",
    "BatchPersistenceManager",
    "BatchResult",
    "CancellationToken",
    "ChangeDetector",
    "ConflictingIdentity",
    "DerivedField",
    "Detection",
    "DetectionOutcome",
    "FieldChange",
    "FieldMerger",
    "IdentityHints",
    "IdentityResolver",
    "InvariantViolation",
    "MalformedRecord",
    "MergeResult",
    "NotableChange",
    "NotableChanges",
    "PassStateError",
    "PassSummary",
    "ProgressCounters",
    "ReconciliationError",
    "RecordError",
    "ReplayedEntity",
    "Resolution",
    "ResolutionStatus",
    "StorageError",
    "TransientStorageError",
    "action_counts",
    "canonical_serialization",
    "change_percentage",
    "content_hash",
    "identity_hints",
    "normalize_url",
    "replay_events",
    "summarize_notable_changes",
    "verify_replay",
]
