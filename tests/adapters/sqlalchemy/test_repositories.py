from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from marketrecon.adapters.sqlalchemy.repositories import (
    SqlAlchemyCanonicalEntityRepository,
    SqlAlchemyChangeEventRepository,
    SqlAlchemyIdentityIndex,
    SqlAlchemyImportBatchRepository,
    SqlAlchemyReconciliationPassRepository,
    SqlAlchemyRecordErrorRepository,
)
from marketrecon.domain.model import (
    ChangeAction,
    ChangeEvent,
    IdentityKind,
    ImportBatch,
    PassStatus,
    ReconciliationPass,
    RecordErrorEntry,
    RecordErrorKind,
)
from tests.helpers.listings import BASE_TIME, make_entity

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def test_entity_query_filters_activity_and_modification(sqlite_session: Session) -> None:
    repository = SqlAlchemyCanonicalEntityRepository(sqlite_session)
    old = make_entity("old", title="Old")
    recent = make_entity("recent", title="Recent")
    recent.updated_at = BASE_TIME + timedelta(days=1)
    gone = make_entity("gone", title="Gone", is_active=False)
    for entity in (old, recent, gone):
        repository.add(entity)

    assert [entity.entity_id for entity in repository.query(active=True)] == ["old", "recent"]
    assert [entity.entity_id for entity in repository.query(active=False)] == ["gone"]
    since = repository.query(modified_since=BASE_TIME + timedelta(hours=1))
    assert [entity.entity_id for entity in since] == ["recent"]


def test_unseen_in_pass_excludes_seen_and_inactive(sqlite_session: Session) -> None:
    repository = SqlAlchemyCanonicalEntityRepository(sqlite_session)
    never_seen = make_entity("a")
    seen_before = make_entity("b")
    seen_before.last_seen_pass = 1
    seen_now = make_entity("c")
    seen_now.last_seen_pass = 2
    inactive = make_entity("d", is_active=False)
    for entity in (never_seen, seen_before, seen_now, inactive):
        repository.add(entity)

    assert [entity.entity_id for entity in repository.unseen_in_pass(2)] == ["a", "b"]


def test_identity_index_claims_once(sqlite_session: Session) -> None:
    entities = SqlAlchemyCanonicalEntityRepository(sqlite_session)
    entities.add(make_entity("a"))
    entities.add(make_entity("b"))
    index = SqlAlchemyIdentityIndex(sqlite_session)

    assert index.claim(IdentityKind.CANONICAL_URL, "example.com/1", "a")
    assert index.claim(IdentityKind.CANONICAL_URL, "example.com/1", "a")
    assert not index.claim(IdentityKind.CANONICAL_URL, "example.com/1", "b")
    assert index.claim(IdentityKind.EXTERNAL_ID, "example.com/1", "b")

    assert index.lookup(IdentityKind.CANONICAL_URL, "example.com/1") == "a"
    assert index.lookup(IdentityKind.TITLE_PRICE, "missing") is None
    assert index.keys_for("b") == [(IdentityKind.EXTERNAL_ID, "example.com/1")]


def test_change_events_keep_append_order(sqlite_session: Session) -> None:
    SqlAlchemyCanonicalEntityRepository(sqlite_session).add(make_entity("a"))
    repository = SqlAlchemyChangeEventRepository(sqlite_session)
    insert = ChangeEvent(
        action=ChangeAction.INSERT,
        entity_id="a",
        batch_id="b1",
        new_value={"price": 1},
        occurred_at=BASE_TIME,
    )
    update = ChangeEvent(
        action=ChangeAction.UPDATE,
        entity_id="a",
        batch_id="b1",
        field_name="price",
        old_value=1,
        new_value=2,
        change_percentage=100.0,
        occurred_at=BASE_TIME,
        sequence=1,
    )
    repository.add(insert)
    repository.add(update)

    assert insert.event_id is not None
    assert update.event_id is not None
    assert insert.event_id < update.event_id
    assert repository.query() == [insert, update]
    assert repository.query(action=ChangeAction.UPDATE) == [update]
    assert repository.query(batch_id="other") == []


def test_passes_track_open_pass_and_latest_sequence(sqlite_session: Session) -> None:
    repository = SqlAlchemyReconciliationPassRepository(sqlite_session)
    assert repository.latest_sequence() == 0
    assert repository.open_pass() is None

    first = ReconciliationPass(sequence=1, started_at=BASE_TIME)
    first.complete(at=BASE_TIME)
    second = ReconciliationPass(sequence=2, started_at=BASE_TIME)
    repository.add(first)
    repository.add(second)

    assert repository.latest_sequence() == 2
    open_pass = repository.open_pass()
    assert open_pass is second
    assert open_pass.status is PassStatus.OPEN


def test_batches_and_record_errors_filter(sqlite_session: Session) -> None:
    passes = SqlAlchemyReconciliationPassRepository(sqlite_session)
    reconciliation_pass = ReconciliationPass(sequence=1, started_at=BASE_TIME)
    passes.add(reconciliation_pass)
    batches = SqlAlchemyImportBatchRepository(sqlite_session)
    in_pass = ImportBatch(pass_id=reconciliation_pass.pass_id, started_at=BASE_TIME)
    standalone = ImportBatch(started_at=BASE_TIME + timedelta(seconds=1))
    batches.add(in_pass)
    batches.add(standalone)
    errors = SqlAlchemyRecordErrorRepository(sqlite_session)
    malformed = RecordErrorEntry(
        batch_id=in_pass.batch_id,
        position=0,
        kind=RecordErrorKind.MALFORMED_RECORD,
        message="no identity hint",
        occurred_at=BASE_TIME,
    )
    conflict = RecordErrorEntry(
        batch_id=standalone.batch_id,
        position=3,
        kind=RecordErrorKind.CONFLICTING_IDENTITY,
        message="conflict",
        flagged_for_review=True,
        occurred_at=BASE_TIME,
    )
    errors.add(malformed)
    errors.add(conflict)

    assert batches.query(pass_id=reconciliation_pass.pass_id) == [in_pass]
    assert batches.query() == [in_pass, standalone]
    assert batches.get(standalone.batch_id) is standalone
    assert errors.query(flagged_for_review=True) == [conflict]
    assert errors.query(batch_id=in_pass.batch_id) == [malformed]
