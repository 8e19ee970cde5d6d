"""Result and control objects exchanged with callers of the batch manager."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from marketrecon.domain.model import BatchStatus

from .errors import BatchCancelledError
from .insights import NotableChanges

if TYPE_CHECKING:
    from marketrecon.domain.model import ChangeEvent, RecordErrorEntry

    from .errors import StorageError


@dataclass(frozen=True, slots=True, kw_only=True)
class BatchResult:
    """Report of one submitted batch.

    A failed or cancelled batch reports zero counts: nothing of it was persisted.
    """

    batch_id: str
    status: BatchStatus
    source_descriptor: str = ""
    submitted: int = 0
    imported: int = 0
    updated: int = 0
    duplicates: int = 0
    restored: int = 0
    errors: int = 0
    duration: float = 0.0
    events: tuple[ChangeEvent, ...] = ()
    record_errors: tuple[RecordErrorEntry, ...] = ()
    error: StorageError | None = None

    @property
    def ok(self) -> bool:
        return self.status is BatchStatus.COMMITTED

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass(frozen=True, slots=True, kw_only=True)
class PassSummary:
    """Aggregate of all batches of one pass plus its missed-pass sweep."""

    pass_id: str
    sequence: int
    source_descriptor: str = ""
    batches: int = 0
    inserted: int = 0
    updated: int = 0
    duplicates: int = 0
    restored: int = 0
    deleted: int = 0
    errored: int = 0
    notable: NotableChanges = field(default_factory=NotableChanges)


@dataclass(slots=True)
class ProgressCounters:
    """Running totals readable while a long import is still in progress.

    ``records_processed`` advances per record of the batch in flight; the other
    counters only move once a batch has committed.
    """

    batches_committed: int = 0
    batches_failed: int = 0
    records_processed: int = 0
    imported: int = 0
    updated: int = 0
    duplicates: int = 0
    restored: int = 0
    errors: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_processed(self) -> None:
        with self._lock:
            self.records_processed += 1

    def record_batch(self, result: BatchResult) -> None:
        with self._lock:
            if not result.ok:
                self.batches_failed += 1
                return
            self.batches_committed += 1
            self.imported += result.imported
            self.updated += result.updated
            self.duplicates += result.duplicates
            self.restored += result.restored
            self.errors += result.errors

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "batches_committed": self.batches_committed,
                "batches_failed": self.batches_failed,
                "records_processed": self.records_processed,
                "imported": self.imported,
                "updated": self.updated,
                "duplicates": self.duplicates,
                "restored": self.restored,
                "errors": self.errors,
            }


class CancellationToken:
    """Cooperative cancellation, optionally with a deadline.

    The batch manager checks the token between records and right before commit;
    a cancelled batch rolls back exactly like a storage failure.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise BatchCancelledError("batch cancelled before commit")
