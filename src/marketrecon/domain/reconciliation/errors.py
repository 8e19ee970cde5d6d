"""Error taxonomy for reconciliation.

Per-record errors (``RecordError``) are recovered inside a batch; storage errors
abort and roll back the whole batch; an ``InvariantViolation`` halts all writes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketrecon.domain.model import RecordErrorKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketrecon.domain.model import IdentityKind


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class RecordError(ReconciliationError):
    """A single candidate could not be reconciled; the batch continues."""

    kind: RecordErrorKind
    flag_for_review: bool = False


class MalformedRecord(RecordError):
    """Candidate lacks the identity hints or required fields to be reconciled."""

    kind = RecordErrorKind.MALFORMED_RECORD


class ConflictingIdentity(RecordError):
    """Identity hints of one candidate point to two different entities."""

    kind = RecordErrorKind.CONFLICTING_IDENTITY
    flag_for_review = True

    def __init__(
        self,
        message: str,
        *,
        entity_ids: tuple[str, ...],
        rules: tuple[IdentityKind, ...],
    ) -> None:
        self.entity_ids = entity_ids
        self.rules = rules
        super().__init__(message)


class StorageError(ReconciliationError):
    """Batch-level failure; the batch is rolled back without side effects."""


class TransientStorageError(StorageError):
    """Storage unavailable or commit failed; the caller may retry the batch."""


class BatchCancelledError(StorageError):
    """The batch was cancelled before commit."""


class PassStateError(ReconciliationError):
    """A pass was opened twice, or used after completion."""


class InvariantViolation(ReconciliationError):
    """Audit replay no longer reproduces stored state; writes are halted."""

    def __init__(self, message: str, *, mismatches: Sequence[str] = ()) -> None:
        self.mismatches = tuple(mismatches)
        super().__init__(message)
