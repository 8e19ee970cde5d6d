from __future__ import annotations

import itertools
from dataclasses import replace
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from marketrecon.adapters.sqlalchemy.mappings import identity_key_table
from marketrecon.adapters.sqlalchemy.repositories import SqlAlchemyIdentityIndex
from marketrecon.adapters.sqlalchemy.unit_of_work import SqlAlchemyReconciliationUnitOfWork
from marketrecon.app import import_candidates
from marketrecon.config import ReconciliationConfig
from marketrecon.domain.model import BatchStatus, ChangeAction, IdentityKind
from marketrecon.domain.reconciliation import (
    BatchPersistenceManager,
    CancellationToken,
    TransientStorageError,
    content_hash,
    replay_events,
)
from tests.helpers.listings import FixedClock, make_candidate

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from sqlalchemy.orm import Session

    from marketrecon.domain.model import CandidateRecord, CanonicalEntity
    from marketrecon.domain.ports.unit_of_work import ReconciliationRepositories

pytestmark = pytest.mark.integration

type UnitOfWorkFactory = Callable[[], SqlAlchemyReconciliationUnitOfWork]


class _FailingCommitUnitOfWork(SqlAlchemyReconciliationUnitOfWork):
    def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("database is locked"))


class _ExplodingIdentityIndex(SqlAlchemyIdentityIndex):
    def claim(self, kind: IdentityKind, value: str, entity_id: str) -> bool:
        if value == "boom":
            raise OperationalError("INSERT INTO identity_key", {}, Exception("disk I/O error"))
        return super().claim(kind, value, entity_id)


class _ExplodingUnitOfWork(SqlAlchemyReconciliationUnitOfWork):
    def _build_repositories(self, session: Session) -> ReconciliationRepositories:
        return replace(
            super()._build_repositories(session),
            identity_index=_ExplodingIdentityIndex(session),
        )


def _snapshot(factory: UnitOfWorkFactory) -> tuple[object, ...]:
    with factory() as uow:
        repositories = uow.repositories
        entities = [
            (entity.entity_id, dict(entity.fields), entity.is_active, entity.content_hash)
            for entity in repositories.entities.query()
        ]
        events = [
            (event.event_id, event.action, event.entity_id, event.field_name)
            for event in repositories.change_events.query()
        ]
        batches = [batch.batch_id for batch in repositories.batches.query()]
        keys = sorted(
            (str(row.kind), row.value, row.entity_id)
            for row in uow.session.execute(select(identity_key_table))
        )
    return entities, events, batches, keys


def _entity(factory: UnitOfWorkFactory, entity_id: str) -> CanonicalEntity:
    with factory() as uow:
        entity = uow.repositories.entities.get(entity_id)
    assert entity is not None
    return entity


def _baseline(manager: BatchPersistenceManager) -> None:
    result = manager.submit(
        [make_candidate(external_id="123", title="Niche Blog", price=50000, confidence=50)]
    )
    assert result.imported == 1


def test_more_confident_price_updates_entity_and_hash(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    _baseline(manager)
    baseline_hash = _entity(sqlite_unit_of_work, "123").content_hash

    result = manager.submit([make_candidate(external_id="123", price=55000, confidence=80)])

    assert (result.updated, result.imported, result.duplicates) == (1, 0, 0)
    [event] = result.events
    assert (event.action, event.field_name, event.old_value, event.new_value) == (
        ChangeAction.UPDATE,
        "price",
        50000,
        55000,
    )
    entity = _entity(sqlite_unit_of_work, "123")
    assert entity.content_hash != baseline_hash
    assert entity.content_hash == content_hash({"title": "Niche Blog", "price": 55000})


def test_url_variants_in_one_batch_resolve_to_one_entity(manager: BatchPersistenceManager) -> None:
    result = manager.submit(
        [
            make_candidate(canonical_url="https://example.com/Listing/7", title="Shop", price=1000),
            make_candidate(canonical_url="HTTPS://EXAMPLE.COM/listing/7/", title="Shop", price=1000),
        ]
    )

    assert (result.imported, result.duplicates) == (1, 1)
    actions = [event.action for event in result.events]
    assert actions.count(ChangeAction.INSERT) == 1


def test_title_price_match_outside_tolerance_creates_new_entity(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    _baseline(manager)

    result = manager.submit([make_candidate(title_price_key="niche blog|50000", price=40000)])

    assert result.imported == 1
    [insert] = result.events
    assert insert.entity_id != "123"
    assert _entity(sqlite_unit_of_work, "123").fields["price"] == 50000


def test_entity_missing_three_passes_is_deleted_once_and_restored(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    keeper = make_candidate(external_id="keep", title="Keeper", price=1000)
    leaver = make_candidate(external_id="leave", title="Leaver", price=2000)

    manager.run_pass([keeper, leaver], source_descriptor="pass-1")
    deleted_per_pass = [
        manager.run_pass([keeper], source_descriptor=f"pass-{number}").deleted
        for number in (2, 3, 4)
    ]

    assert deleted_per_pass == [0, 0, 1]
    assert not _entity(sqlite_unit_of_work, "leave").is_active
    with sqlite_unit_of_work() as uow:
        deletes = uow.repositories.change_events.query(entity_id="leave", action=ChangeAction.DELETE)
    assert len(deletes) == 1

    summary = manager.run_pass([keeper, leaver], source_descriptor="pass-5")

    assert summary.restored == 1
    assert summary.inserted == 0
    restored = _entity(sqlite_unit_of_work, "leave")
    assert restored.is_active
    assert restored.missed_pass_count == 0
    with sqlite_unit_of_work() as uow:
        leave_events = uow.repositories.change_events.query(entity_id="leave")
        inserts = uow.repositories.change_events.query(action=ChangeAction.INSERT)
    assert [event.action for event in leave_events] == [
        ChangeAction.INSERT,
        ChangeAction.DELETE,
        ChangeAction.RESTORE,
    ]
    assert len(inserts) == 2


def test_identical_batch_twice_is_idempotent(manager: BatchPersistenceManager) -> None:
    batch = [
        make_candidate(external_id="1", title="Blog", price=50000, monthly_profit=1000),
        make_candidate(canonical_url="example.com/2", title="Shop", price=20000),
        make_candidate(title_price_key="tool|9000", title="Tool", price=9000),
    ]

    first = manager.submit(batch)
    second = manager.submit(batch)

    assert first.imported == 3
    assert (second.imported, second.updated, second.duplicates) == (0, 0, 3)
    assert second.events == ()


def test_replay_reproduces_every_entity(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    manager.run_pass(
        [
            make_candidate(external_id="1", title="Blog", price=50000, monthly_revenue=4000),
            make_candidate(external_id="2", title="Shop", price=20000),
        ]
    )
    manager.run_pass(
        [
            make_candidate(external_id="1", price=45000, monthly_revenue=9000, confidence=70),
            make_candidate(external_id="2", category="ecommerce"),
            make_candidate(external_id="3", title="App", price=1),
        ]
    )

    with sqlite_unit_of_work() as uow:
        entities = uow.repositories.entities.query()
        replayed = replay_events(uow.repositories.change_events.query())

    assert {entity.entity_id for entity in entities} == set(replayed)
    for entity in entities:
        assert replayed[entity.entity_id].fields == entity.fields
        assert replayed[entity.entity_id].is_active == entity.is_active
    assert manager.verify_audit_log() == 3


def test_different_external_ids_never_merge(manager: BatchPersistenceManager) -> None:
    result = manager.submit(
        [
            make_candidate(external_id="111", title="Niche Blog", price=50000),
            make_candidate(external_id="222", title="Niche Blog", price=50000),
        ]
    )

    assert result.imported == 2
    assert {event.entity_id for event in result.events} == {"111", "222"}


def test_stored_value_never_regresses_to_lower_or_equal_confidence(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    manager.submit([make_candidate(external_id="1", title="Blog", price=50000, confidence=90)])

    for confidence in (90, 60, 10):
        result = manager.submit(
            [make_candidate(external_id="1", price=1000 + confidence, confidence=confidence)]
        )
        assert result.updated == 0

    entity = _entity(sqlite_unit_of_work, "1")
    assert entity.fields["price"] == 50000
    assert entity.field_confidence["price"] == 90


def test_commit_failure_leaves_store_untouched(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    _baseline(manager)
    before = _snapshot(sqlite_unit_of_work)
    failing = BatchPersistenceManager(
        unit_of_work_factory=_FailingCommitUnitOfWork,
        config=manager.config,
        clock=FixedClock(),
    )

    result = failing.submit(
        [
            make_candidate(external_id="123", price=10, confidence=99),
            make_candidate(external_id="new", title="New", price=5),
        ]
    )

    assert result.status is BatchStatus.FAILED
    assert isinstance(result.error, TransientStorageError)
    assert (result.imported, result.updated) == (0, 0)
    assert _snapshot(sqlite_unit_of_work) == before


def test_storage_failure_mid_batch_rolls_back_earlier_records(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    _baseline(manager)
    before = _snapshot(sqlite_unit_of_work)
    exploding = BatchPersistenceManager(
        unit_of_work_factory=_ExplodingUnitOfWork,
        config=manager.config,
        clock=FixedClock(),
    )

    result = exploding.submit(
        [
            make_candidate(external_id="123", price=10, confidence=99),
            make_candidate(external_id="fine", title="Fine", price=5),
            make_candidate(external_id="boom", title="Boom", price=5),
            make_candidate(external_id="never", title="Never", price=5),
        ]
    )

    assert result.status is BatchStatus.FAILED
    assert "disk I/O error" in str(result.error)
    assert _snapshot(sqlite_unit_of_work) == before


def test_cancellation_mid_batch_rolls_back(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    before = _snapshot(sqlite_unit_of_work)
    ticks = itertools.count()
    token = CancellationToken(timeout=2.5, clock=lambda: float(next(ticks)))

    result = manager.submit(
        [make_candidate(external_id=str(index), title="x", price=index) for index in range(3)],
        cancellation=token,
    )

    assert result.status is BatchStatus.CANCELLED
    assert manager.progress.snapshot()["records_processed"] == 2
    assert _snapshot(sqlite_unit_of_work) == before


def test_record_errors_are_persisted_and_flagged(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    manager.submit(
        [
            make_candidate(external_id="a", title="A", price=1),
            make_candidate(canonical_url="example.com/b", title="B", price=2),
        ]
    )

    result = manager.submit(
        [
            make_candidate(category="orphan"),
            make_candidate(external_id="a", canonical_url="https://example.com/b/", price=3),
            make_candidate(external_id="c", title="C", price=4),
        ]
    )

    assert (result.imported, result.errors) == (1, 2)
    with sqlite_unit_of_work() as uow:
        flagged = uow.repositories.record_errors.query(flagged_for_review=True)
        batch = uow.repositories.batches.get(result.batch_id)
    assert [(entry.position, entry.external_id) for entry in flagged] == [(1, "a")]
    assert batch is not None
    assert batch.errored == 2


def test_pass_summary_reports_notable_changes(manager: BatchPersistenceManager) -> None:
    manager.run_pass(
        [
            make_candidate(
                external_id="1",
                title="Blog",
                price=50000,
                monthly_revenue=2000,
                category="content",
            ),
            make_candidate(external_id="2", title="Shop", price=20000),
        ]
    )

    summary = manager.run_pass(
        [
            make_candidate(
                external_id="1",
                price=30000,
                monthly_revenue=9000,
                category="saas",
                confidence=80,
            ),
            make_candidate(external_id="2", price=19000, confidence=80),
        ]
    )

    assert summary.updated == 2
    assert [change.entity_id for change in summary.notable.price_drops] == ["1"]
    assert [change.entity_id for change in summary.notable.revenue_changes] == ["1"]
    assert [change.entity_id for change in summary.notable.category_changes] == ["1"]


def test_import_resumes_open_pass(
    tmp_path: Path,
    sqlite_unit_of_work: UnitOfWorkFactory,
    reconciliation_config: ReconciliationConfig,
) -> None:
    manager = BatchPersistenceManager(
        unit_of_work_factory=sqlite_unit_of_work,
        config=reconciliation_config,
        clock=FixedClock(),
    )
    left_open = manager.begin_pass(source_descriptor="interrupted")
    path = tmp_path / "snapshot.jsonl"
    path.write_text('{"external_id": "1", "fields": {"title": "Blog", "price": 1}}\n', encoding="utf-8")

    result = import_candidates(path, resume=True, manager=manager)

    assert result.ok
    assert result.pass_summary is not None
    assert result.pass_summary.pass_id == left_open.pass_id
    assert result.pass_summary.inserted == 1
    assert manager.open_pass() is None


def test_import_stops_after_failed_batch(
    tmp_path: Path,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    _ = sqlite_unit_of_work
    failing = BatchPersistenceManager(
        unit_of_work_factory=_FailingCommitUnitOfWork,
        config=ReconciliationConfig(batch_size=1),
        clock=FixedClock(),
    )
    path = tmp_path / "snapshot.jsonl"
    path.write_text(
        '{"external_id": "1", "fields": {"title": "A"}}\n{"external_id": "2", "fields": {"title": "B"}}\n',
        encoding="utf-8",
    )

    result = import_candidates(path, as_pass=False, manager=failing)

    assert not result.ok
    assert len(result.batches) == 1
    assert result.pass_summary is None


def test_import_from_custom_source_uses_its_descriptor(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    def source(*, max_records: int | None = None) -> list[CandidateRecord]:
        return _records("1", "2")[:max_records]

    result = import_candidates(source=source, source_descriptor="crawler-2026-01-05", manager=manager)

    assert result.ok
    assert result.pass_summary is not None
    assert result.pass_summary.inserted == 2
    with sqlite_unit_of_work() as uow:
        descriptors = [batch.source_descriptor for batch in uow.repositories.batches.query()]
    assert descriptors == ["crawler-2026-01-05", "sweep:crawler-2026-01-05"]


def test_import_from_custom_source_requires_descriptor(manager: BatchPersistenceManager) -> None:
    def source(*, max_records: int | None = None) -> list[CandidateRecord]:
        return []

    with pytest.raises(ValueError, match="source_descriptor"):
        import_candidates("ignored.jsonl", source=source, manager=manager)

    with pytest.raises(ValueError, match="path or a candidate source"):
        import_candidates(manager=manager)

    assert manager.open_pass() is None


def _records(*external_ids: str) -> list[CandidateRecord]:
    return [
        make_candidate(external_id=external_id, title=external_id, price=1)
        for external_id in external_ids
    ]


def test_identity_keys_follow_first_owner(
    manager: BatchPersistenceManager,
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    manager.submit(_records("x", "y"))

    with sqlite_unit_of_work() as uow:
        keys = uow.repositories.identity_index
        assert keys.lookup(IdentityKind.EXTERNAL_ID, "x") == "x"
        assert keys.lookup(IdentityKind.TITLE_PRICE, "x|0") == "x"
        assert keys.lookup(IdentityKind.TITLE_PRICE, "y|0") == "y"
