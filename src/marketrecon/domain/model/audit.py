"""Audit records: change events, import batches, passes and record errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from .entity import new_id
from .enums import BatchStatus, ChangeAction, PassStatus, RecordErrorKind


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(eq=False, kw_only=True)
class ChangeEvent:
    """Append-only audit record.

    ``new_value`` of an INSERT holds the full initial field mapping; UPDATE events
    hold one field's old and new value; DELETE and RESTORE hold the activity flag.
    """

    action: ChangeAction
    entity_id: str
    batch_id: str
    field_name: str | None = None
    old_value: object = None
    new_value: object = None
    change_percentage: float | None = None
    occurred_at: datetime = field(default_factory=_utcnow)
    source: str = ""
    sequence: int = 0
    event_id: int | None = None


@dataclass(eq=False, kw_only=True)
class ImportBatch:
    """Unit of work summary for one committed batch."""

    batch_id: str = field(default_factory=new_id)
    source_descriptor: str = ""
    pass_id: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    status: BatchStatus = BatchStatus.RUNNING
    inserted: int = 0
    updated: int = 0
    duplicates: int = 0
    restored: int = 0
    deleted: int = 0
    errored: int = 0

    def complete(self, *, at: datetime) -> None:
        self.completed_at = at
        self.status = BatchStatus.COMMITTED


@dataclass(eq=False, kw_only=True)
class ReconciliationPass:
    """One full re-scrape of the marketplace, possibly spanning many batches."""

    sequence: int
    pass_id: str = field(default_factory=new_id)
    source_descriptor: str = ""
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    status: PassStatus = PassStatus.OPEN
    inserted: int = 0
    updated: int = 0
    duplicates: int = 0
    restored: int = 0
    deleted: int = 0
    errored: int = 0

    @property
    def is_open(self) -> bool:
        return self.status is PassStatus.OPEN

    def complete(self, *, at: datetime) -> None:
        self.completed_at = at
        self.status = PassStatus.COMPLETED


@dataclass(eq=False, kw_only=True)
class RecordErrorEntry:
    """A candidate that was skipped inside a batch; conflicts await manual review."""

    batch_id: str
    position: int
    kind: RecordErrorKind
    message: str
    external_id: str | None = None
    canonical_url: str | None = None
    flagged_for_review: bool = False
    occurred_at: datetime = field(default_factory=_utcnow)
    error_id: int | None = None
