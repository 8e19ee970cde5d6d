"""Application orchestration entry points."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import dataclass, replace
from logging import getLogger
from typing import TYPE_CHECKING

from marketrecon.adapters.jsonl import JsonlCandidateSource
from marketrecon.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyReconciliationUnitOfWork,
    is_started,
    startup,
)
from marketrecon.config import ReconciliationConfig, get_reconciliation_config
from marketrecon.domain.model import DEFAULT_SOURCE_STRATEGY
from marketrecon.domain.ports.unit_of_work import ReconciliationUnitOfWork
from marketrecon.domain.reconciliation import BatchPersistenceManager

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from pathlib import Path

    from marketrecon.domain.model import (
        CanonicalEntity,
        ChangeAction,
        ChangeEvent,
        ImportBatch,
        RecordErrorEntry,
    )
    from marketrecon.domain.ports.fetching import CandidateSource
    from marketrecon.domain.reconciliation import BatchResult, PassSummary

UnitOfWorkFactory = Callable[[], ReconciliationUnitOfWork]


log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Outcome of one import run; ``pass_summary`` is None for loose batches."""

    batches: tuple[BatchResult, ...]
    pass_summary: PassSummary | None = None

    @property
    def ok(self) -> bool:
        return all(batch.ok for batch in self.batches)


def _default_unit_of_work_factory() -> UnitOfWorkFactory:
    if not is_started():
        startup()
    return SqlAlchemyReconciliationUnitOfWork


def build_manager(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: ReconciliationConfig | None = None,
) -> BatchPersistenceManager:
    return BatchPersistenceManager(
        unit_of_work_factory=unit_of_work_factory or _default_unit_of_work_factory(),
        config=config or get_reconciliation_config(),
    )


def import_candidates(
    path: Path | str | None = None,
    *,
    source: CandidateSource | None = None,
    source_descriptor: str | None = None,
    strategy: str = DEFAULT_SOURCE_STRATEGY,
    as_pass: bool = True,
    resume: bool = False,
    batch_size: int | None = None,
    max_records: int | None = None,
    manager: BatchPersistenceManager | None = None,
) -> ImportResult:
    """Reconcile a JSON Lines export, by default as one complete pass.

    ``source`` replaces the JSON Lines reader for ``path`` and then needs an
    explicit ``source_descriptor``. A failed batch stops the import; in pass mode
    the pass stays open and a later call with ``resume=True`` continues it.
    """

    if source is None:
        if path is None:
            raise ValueError("import_candidates needs a path or a candidate source")
        jsonl_source = JsonlCandidateSource(path=path, default_strategy=strategy)
        effective_source: CandidateSource = jsonl_source
        descriptor = source_descriptor or jsonl_source.descriptor
    else:
        if not source_descriptor:
            raise ValueError("A custom candidate source needs a source_descriptor")
        effective_source = source
        descriptor = source_descriptor
    effective_manager = manager or build_manager()
    if batch_size is not None:
        effective_manager.config = replace(effective_manager.config, batch_size=batch_size)

    log.info(
        "Starting import: source=%s, as_pass=%s, batch_size=%s, max_records=%s",
        descriptor,
        as_pass,
        effective_manager.config.batch_size,
        max_records,
    )

    pass_id: str | None = None
    if as_pass:
        open_pass = effective_manager.open_pass() if resume else None
        if open_pass is not None:
            log.info("Resuming open pass #%d", open_pass.sequence)
            pass_id = open_pass.pass_id
        else:
            pass_id = effective_manager.begin_pass(source_descriptor=descriptor).pass_id

    results: list[BatchResult] = []
    records = effective_source(max_records=max_records)
    for chunk in itertools.batched(records, effective_manager.config.batch_size):
        result = effective_manager.submit(chunk, source_descriptor=descriptor, pass_id=pass_id)
        results.append(result)
        if not result.ok:
            log.error("Import stopped after failed batch %s", result.batch_id)
            return ImportResult(batches=tuple(results))

    summary = effective_manager.complete_pass(pass_id) if pass_id is not None else None
    log.info(
        "Finished import: batches=%d, imported=%d, updated=%d, duplicates=%d, errors=%d",
        len(results),
        sum(result.imported for result in results),
        sum(result.updated for result in results),
        sum(result.duplicates for result in results),
        sum(result.errors for result in results),
    )
    return ImportResult(batches=tuple(results), pass_summary=summary)


def list_entities(
    *,
    active: bool | None = None,
    modified_since: datetime | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Sequence[CanonicalEntity]:
    factory = unit_of_work_factory or _default_unit_of_work_factory()
    with factory() as uow:
        return uow.repositories.entities.query(active=active, modified_since=modified_since)


def list_change_events(
    *,
    batch_id: str | None = None,
    entity_id: str | None = None,
    action: ChangeAction | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Sequence[ChangeEvent]:
    factory = unit_of_work_factory or _default_unit_of_work_factory()
    with factory() as uow:
        return uow.repositories.change_events.query(
            batch_id=batch_id,
            entity_id=entity_id,
            action=action,
        )


def list_batches(
    *,
    pass_id: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Sequence[ImportBatch]:
    factory = unit_of_work_factory or _default_unit_of_work_factory()
    with factory() as uow:
        return uow.repositories.batches.query(pass_id=pass_id)


def list_record_errors(
    *,
    batch_id: str | None = None,
    flagged_for_review: bool | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Sequence[RecordErrorEntry]:
    factory = unit_of_work_factory or _default_unit_of_work_factory()
    with factory() as uow:
        return uow.repositories.record_errors.query(
            batch_id=batch_id,
            flagged_for_review=flagged_for_review,
        )


def verify_audit_log(*, manager: BatchPersistenceManager | None = None) -> int:
    """Replay the audit log against stored state; raises ``InvariantViolation`` on mismatch."""

    return (manager or build_manager()).verify_audit_log()
