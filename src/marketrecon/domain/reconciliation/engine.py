"""Batch persistence manager: the single writer of canonical state.

Each batch runs inside one unit of work. Per-record failures are recorded and the
batch continues; storage failures and cancellation roll back the whole batch, so
callers never observe partial state or audit events of a failed batch.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from marketrecon.config import ReconciliationConfig
from marketrecon.domain.model import (
    BatchStatus,
    ChangeAction,
    ImportBatch,
    ReconciliationPass,
    RecordErrorEntry,
    utcnow,
)

from .audit_log import AuditLog, verify_replay
from .contracts import BatchResult, PassSummary, ProgressCounters
from .detect import ChangeDetector, DetectionOutcome
from .errors import (
    BatchCancelledError,
    InvariantViolation,
    PassStateError,
    RecordError,
    StorageError,
)
from .insights import summarize_notable_changes
from .merge import FieldMerger
from .normalize import identity_hints
from .resolve import IdentityResolver

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from marketrecon.domain.model import CandidateRecord, ChangeEvent
    from marketrecon.domain.ports import ReconciliationRepositories, ReconciliationUnitOfWork

    from .contracts import CancellationToken

log = logging.getLogger(__name__)

SWEEP_DESCRIPTOR_PREFIX = "sweep:"


@dataclass(slots=True)
class _BatchTally:
    imported: int = 0
    updated: int = 0
    duplicates: int = 0
    restored: int = 0
    errors: int = 0

    def count(self, outcome: DetectionOutcome) -> None:
        match outcome:
            case DetectionOutcome.INSERTED:
                self.imported += 1
            case DetectionOutcome.UPDATED:
                self.updated += 1
            case DetectionOutcome.DUPLICATE:
                self.duplicates += 1
            case DetectionOutcome.RESTORED:
                self.restored += 1


@dataclass(slots=True, kw_only=True)
class BatchPersistenceManager:
    """Drive candidates through resolve, merge and detect, one batch at a time."""

    unit_of_work_factory: Callable[[], ReconciliationUnitOfWork]
    config: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    clock: Callable[[], datetime] = utcnow
    progress: ProgressCounters = field(default_factory=ProgressCounters)
    merger: FieldMerger = field(init=False)
    _write_lock: threading.Lock = field(init=False, default_factory=threading.Lock)
    _halted_reason: str | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.merger = FieldMerger(epsilon=self.config.confidence_epsilon)

    @property
    def halted(self) -> bool:
        return self._halted_reason is not None

    # --- Batches ---------------------------------------------------------------

    def submit(
        self,
        records: Iterable[CandidateRecord],
        *,
        source_descriptor: str = "",
        pass_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> BatchResult:
        """Reconcile one bounded batch of candidates atomically.

        Returns a failed or cancelled ``BatchResult`` (with zero side effects) on
        storage failure or cancellation; raises ``PassStateError`` when ``pass_id``
        does not name the open pass and ``InvariantViolation`` when writes are halted.
        """

        batch_records = list(records)
        if len(batch_records) > self.config.batch_size:
            raise ValueError(
                f"Batch of {len(batch_records)} records exceeds batch size {self.config.batch_size}"
            )

        with self._write_lock:
            self._ensure_writable()
            started = time.perf_counter()
            batch = ImportBatch(source_descriptor=source_descriptor, pass_id=pass_id, started_at=self.clock())
            try:
                result = self._run_batch(batch, batch_records, cancellation=cancellation, started=started)
            except StorageError as exc:
                status = BatchStatus.CANCELLED if isinstance(exc, BatchCancelledError) else BatchStatus.FAILED
                log.error(
                    "Batch %s (%s) rolled back, %d records discarded: %s",
                    batch.batch_id,
                    source_descriptor,
                    len(batch_records),
                    exc,
                )
                result = BatchResult(
                    batch_id=batch.batch_id,
                    status=status,
                    source_descriptor=source_descriptor,
                    submitted=len(batch_records),
                    duration=time.perf_counter() - started,
                    error=exc,
                )
            self.progress.record_batch(result)
            return result

    def _run_batch(
        self,
        batch: ImportBatch,
        records: list[CandidateRecord],
        *,
        cancellation: CancellationToken | None,
        started: float,
    ) -> BatchResult:
        tally = _BatchTally()
        record_errors: list[RecordErrorEntry] = []
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            reconciliation_pass = self._require_open_pass(repositories, batch.pass_id)
            pass_sequence = reconciliation_pass.sequence if reconciliation_pass else None
            detector = self._detector(repositories)
            audit = AuditLog(repositories.change_events, batch.batch_id)

            for position, record in enumerate(records):
                if cancellation is not None:
                    cancellation.raise_if_cancelled()
                self.progress.record_processed()
                try:
                    detection = detector.detect(
                        batch.batch_id,
                        record,
                        at=self.clock(),
                        pass_sequence=pass_sequence,
                    )
                except RecordError as exc:
                    entry = self._record_error(batch.batch_id, position, record, exc)
                    repositories.record_errors.add(entry)
                    record_errors.append(entry)
                    tally.errors += 1
                    continue
                tally.count(detection.outcome)
                audit.append(detection.events)

            if cancellation is not None:
                cancellation.raise_if_cancelled()

            batch.inserted = tally.imported
            batch.updated = tally.updated
            batch.duplicates = tally.duplicates
            batch.restored = tally.restored
            batch.errored = tally.errors
            batch.complete(at=self.clock())
            repositories.batches.add(batch)
            if reconciliation_pass is not None:
                reconciliation_pass.inserted += tally.imported
                reconciliation_pass.updated += tally.updated
                reconciliation_pass.duplicates += tally.duplicates
                reconciliation_pass.restored += tally.restored
                reconciliation_pass.errored += tally.errors
            uow.commit()

        duration = time.perf_counter() - started
        log.info(
            "Batch %s (%s) committed: imported=%d updated=%d duplicates=%d restored=%d errors=%d in %.3fs",
            batch.batch_id,
            batch.source_descriptor,
            tally.imported,
            tally.updated,
            tally.duplicates,
            tally.restored,
            tally.errors,
            duration,
        )
        return BatchResult(
            batch_id=batch.batch_id,
            status=BatchStatus.COMMITTED,
            source_descriptor=batch.source_descriptor,
            submitted=len(records),
            imported=tally.imported,
            updated=tally.updated,
            duplicates=tally.duplicates,
            restored=tally.restored,
            errors=tally.errors,
            duration=duration,
            events=tuple(audit.appended),
            record_errors=tuple(record_errors),
        )

    # --- Passes ----------------------------------------------------------------

    def begin_pass(self, *, source_descriptor: str = "") -> ReconciliationPass:
        """Open the next pass; only one pass may be open at a time."""

        with self._write_lock:
            self._ensure_writable()
            with self.unit_of_work_factory() as uow:
                passes = uow.repositories.passes
                current = passes.open_pass()
                if current is not None:
                    raise PassStateError(
                        f"Pass {current.pass_id} (#{current.sequence}) is still open"
                    )
                reconciliation_pass = ReconciliationPass(
                    sequence=passes.latest_sequence() + 1,
                    source_descriptor=source_descriptor,
                    started_at=self.clock(),
                )
                passes.add(reconciliation_pass)
                uow.commit()
        log.info("Opened pass #%d (%s)", reconciliation_pass.sequence, source_descriptor)
        return reconciliation_pass

    def open_pass(self) -> ReconciliationPass | None:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.passes.open_pass()

    def complete_pass(self, pass_id: str) -> PassSummary:
        """Close ``pass_id``: sweep unseen entities and summarize the pass.

        The sweep is recorded as an ``ImportBatch`` of its own so its DELETE events
        are attributable like any other change.
        """

        with self._write_lock:
            self._ensure_writable()
            with self.unit_of_work_factory() as uow:
                repositories = uow.repositories
                reconciliation_pass = self._open_pass(repositories, pass_id)
                at = self.clock()
                sweep_batch = ImportBatch(
                    source_descriptor=SWEEP_DESCRIPTOR_PREFIX + reconciliation_pass.source_descriptor,
                    pass_id=pass_id,
                    started_at=at,
                )
                audit = AuditLog(repositories.change_events, sweep_batch.batch_id)
                audit.append(
                    self._detector(repositories).sweep(
                        sweep_batch.batch_id,
                        reconciliation_pass.sequence,
                        at=at,
                    )
                )
                sweep_batch.deleted = len(audit.appended)
                sweep_batch.complete(at=self.clock())
                reconciliation_pass.deleted += sweep_batch.deleted

                pass_batches = [*repositories.batches.query(pass_id=pass_id), sweep_batch]
                updates: list[ChangeEvent] = []
                for pass_batch in pass_batches:
                    updates.extend(
                        repositories.change_events.query(
                            batch_id=pass_batch.batch_id,
                            action=ChangeAction.UPDATE,
                        )
                    )
                repositories.batches.add(sweep_batch)
                reconciliation_pass.complete(at=self.clock())
                uow.commit()

        summary = PassSummary(
            pass_id=reconciliation_pass.pass_id,
            sequence=reconciliation_pass.sequence,
            source_descriptor=reconciliation_pass.source_descriptor,
            batches=len(pass_batches),
            inserted=reconciliation_pass.inserted,
            updated=reconciliation_pass.updated,
            duplicates=reconciliation_pass.duplicates,
            restored=reconciliation_pass.restored,
            deleted=reconciliation_pass.deleted,
            errored=reconciliation_pass.errored,
            notable=summarize_notable_changes(
                updates,
                price_drop_percent=self.config.price_drop_percent,
                revenue_change_amount=self.config.revenue_change_amount,
            ),
        )
        log.info(
            "Completed pass #%d: inserted=%d updated=%d restored=%d deleted=%d errored=%d notable=%d",
            summary.sequence,
            summary.inserted,
            summary.updated,
            summary.restored,
            summary.deleted,
            summary.errored,
            summary.notable.total,
        )
        return summary

    def run_pass(
        self,
        records: Iterable[CandidateRecord],
        *,
        source_descriptor: str = "",
        cancellation: CancellationToken | None = None,
    ) -> PassSummary:
        """Reconcile a complete snapshot as one pass.

        On a failed batch the storage error is raised and the pass stays open, so
        the caller can resubmit into it and complete it later.
        """

        reconciliation_pass = self.begin_pass(source_descriptor=source_descriptor)
        for chunk in itertools.batched(records, self.config.batch_size):
            result = self.submit(
                chunk,
                source_descriptor=source_descriptor,
                pass_id=reconciliation_pass.pass_id,
                cancellation=cancellation,
            )
            result.raise_for_status()
        return self.complete_pass(reconciliation_pass.pass_id)

    # --- Audit -----------------------------------------------------------------

    def verify_audit_log(self) -> int:
        """Replay the full audit log against stored state.

        Returns the number of verified entities. On mismatch all further writes
        are refused and ``InvariantViolation`` is raised.
        """

        with self._write_lock:
            with self.unit_of_work_factory() as uow:
                entities = uow.repositories.entities.query()
                events = uow.repositories.change_events.query()
                mismatches = verify_replay(entities, events)
            if mismatches:
                self._halted_reason = f"audit replay mismatch for {len(mismatches)} entities"
                for mismatch in mismatches:
                    log.critical("Audit replay mismatch: %s", mismatch)
                raise InvariantViolation(self._halted_reason, mismatches=mismatches)
        log.info("Audit log replay verified %d entities from %d events", len(entities), len(events))
        return len(entities)

    # --- Helpers ---------------------------------------------------------------

    def _ensure_writable(self) -> None:
        if self._halted_reason is not None:
            raise InvariantViolation(f"Writes halted: {self._halted_reason}")

    def _detector(self, repositories: ReconciliationRepositories) -> ChangeDetector:
        resolver = IdentityResolver(
            index=repositories.identity_index,
            entities=repositories.entities,
            price_tolerance=self.config.price_tolerance,
            price_bucket=self.config.price_bucket,
            title_key_length=self.config.title_key_length,
        )
        return ChangeDetector(
            resolver=resolver,
            merger=self.merger,
            entities=repositories.entities,
            required_fields=self.config.required_fields,
            missed_pass_threshold=self.config.missed_pass_threshold,
        )

    @staticmethod
    def _require_open_pass(
        repositories: ReconciliationRepositories,
        pass_id: str | None,
    ) -> ReconciliationPass | None:
        if pass_id is None:
            return None
        return BatchPersistenceManager._open_pass(repositories, pass_id)

    @staticmethod
    def _open_pass(repositories: ReconciliationRepositories, pass_id: str) -> ReconciliationPass:
        reconciliation_pass = repositories.passes.get(pass_id)
        if reconciliation_pass is None:
            raise PassStateError(f"Unknown pass {pass_id}")
        if not reconciliation_pass.is_open:
            raise PassStateError(f"Pass {pass_id} is already completed")
        return reconciliation_pass

    def _record_error(
        self,
        batch_id: str,
        position: int,
        record: CandidateRecord,
        error: RecordError,
    ) -> RecordErrorEntry:
        hints = identity_hints(
            record,
            price_bucket=self.config.price_bucket,
            max_title_length=self.config.title_key_length,
        )
        log.warning(
            "Skipping record %d of batch %s (%s): %s",
            position,
            batch_id,
            error.kind,
            error,
        )
        return RecordErrorEntry(
            batch_id=batch_id,
            position=position,
            kind=error.kind,
            message=str(error),
            external_id=hints.external_id,
            canonical_url=hints.canonical_url,
            flagged_for_review=error.flag_for_review,
            occurred_at=self.clock(),
        )
