"""Repository implementations backed by SQLAlchemy sessions.

Every ``add`` flushes immediately: later candidates of the same batch must see
entities and identity keys created by earlier ones, and autoincrement event ids
must follow append order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

from sqlalchemy import func, or_, select

from marketrecon.adapters.sqlalchemy.mappings import (
    canonical_entity_table,
    change_event_table,
    identity_key_table,
    import_batch_table,
    reconciliation_pass_table,
    record_error_table,
)
from marketrecon.domain.model import (
    CanonicalEntity,
    ChangeEvent,
    ImportBatch,
    PassStatus,
    ReconciliationPass,
    RecordErrorEntry,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.orm import Session

    from marketrecon.domain.model import ChangeAction, IdentityKind


class SqlAlchemyCanonicalEntityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: CanonicalEntity) -> None:
        self.session.add(entity)
        self.session.flush()

    def get(self, entity_id: str) -> CanonicalEntity | None:
        return self.session.get(CanonicalEntity, entity_id)

    def query(
        self,
        *,
        active: bool | None = None,
        modified_since: datetime | None = None,
    ) -> Sequence[CanonicalEntity]:
        stmt = select(CanonicalEntity).order_by(
            canonical_entity_table.c.first_seen_at,
            canonical_entity_table.c.entity_id,
        )
        if active is not None:
            stmt = stmt.where(canonical_entity_table.c.is_active == active)
        if modified_since is not None:
            stmt = stmt.where(canonical_entity_table.c.updated_at >= modified_since)
        return self.session.execute(stmt).scalars().all()

    def unseen_in_pass(self, pass_sequence: int) -> Sequence[CanonicalEntity]:
        last_seen = canonical_entity_table.c.last_seen_pass
        stmt = (
            select(CanonicalEntity)
            .where(canonical_entity_table.c.is_active.is_(True))
            .where(or_(last_seen.is_(None), last_seen < pass_sequence))
            .order_by(canonical_entity_table.c.entity_id)
        )
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyIdentityIndex:
    """Identity hints persisted in ``identity_key``; the primary key enforces one owner."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def lookup(self, kind: IdentityKind, value: str) -> str | None:
        stmt = (
            select(identity_key_table.c.entity_id)
            .where(identity_key_table.c.kind == kind)
            .where(identity_key_table.c.value == value)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def claim(self, kind: IdentityKind, value: str, entity_id: str) -> bool:
        owner = self.lookup(kind, value)
        if owner is not None:
            return owner == entity_id
        self.session.execute(
            identity_key_table.insert().values(kind=kind, value=value, entity_id=entity_id)
        )
        return True

    def keys_for(self, entity_id: str) -> list[tuple[IdentityKind, str]]:
        stmt = (
            select(identity_key_table.c.kind, identity_key_table.c.value)
            .where(identity_key_table.c.entity_id == entity_id)
            .order_by(identity_key_table.c.kind, identity_key_table.c.value)
        )
        return [(row.kind, row.value) for row in self.session.execute(stmt)]


class SqlAlchemyChangeEventRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ChangeEvent) -> None:
        self.session.add(entity)
        self.session.flush()

    def query(
        self,
        *,
        batch_id: str | None = None,
        entity_id: str | None = None,
        action: ChangeAction | None = None,
    ) -> Sequence[ChangeEvent]:
        stmt = select(ChangeEvent).order_by(change_event_table.c.event_id)
        if batch_id is not None:
            stmt = stmt.where(change_event_table.c.batch_id == batch_id)
        if entity_id is not None:
            stmt = stmt.where(change_event_table.c.entity_id == entity_id)
        if action is not None:
            stmt = stmt.where(change_event_table.c.action == action)
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyImportBatchRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ImportBatch) -> None:
        self.session.add(entity)
        self.session.flush()

    def get(self, batch_id: str) -> ImportBatch | None:
        return self.session.get(ImportBatch, batch_id)

    def query(self, *, pass_id: str | None = None) -> Sequence[ImportBatch]:
        stmt = select(ImportBatch).order_by(import_batch_table.c.started_at, import_batch_table.c.batch_id)
        if pass_id is not None:
            stmt = stmt.where(import_batch_table.c.pass_id == pass_id)
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyReconciliationPassRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ReconciliationPass) -> None:
        self.session.add(entity)
        self.session.flush()

    def get(self, pass_id: str) -> ReconciliationPass | None:
        return self.session.get(ReconciliationPass, pass_id)

    def open_pass(self) -> ReconciliationPass | None:
        stmt = (
            select(ReconciliationPass)
            .where(reconciliation_pass_table.c.status == PassStatus.OPEN)
            .order_by(reconciliation_pass_table.c.sequence.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def latest_sequence(self) -> int:
        stmt = select(func.max(reconciliation_pass_table.c.sequence))
        latest = self.session.execute(stmt).scalar_one_or_none()
        return cast("int | None", latest) or 0


class SqlAlchemyRecordErrorRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: RecordErrorEntry) -> None:
        self.session.add(entity)
        self.session.flush()

    def query(
        self,
        *,
        batch_id: str | None = None,
        flagged_for_review: bool | None = None,
    ) -> Sequence[RecordErrorEntry]:
        stmt = select(RecordErrorEntry).order_by(record_error_table.c.error_id)
        if batch_id is not None:
            stmt = stmt.where(record_error_table.c.batch_id == batch_id)
        if flagged_for_review is not None:
            stmt = stmt.where(record_error_table.c.flagged_for_review == flagged_for_review)
        return self.session.execute(stmt).scalars().all()


if TYPE_CHECKING:
    from marketrecon.domain.ports.persistence import (
        CanonicalEntityRepository,
        ChangeEventRepository,
        IdentityIndex,
        ImportBatchRepository,
        ReconciliationPassRepository,
        RecordErrorRepository,
    )

    _session_stub = cast("Session", object())
    _entity_repo: CanonicalEntityRepository = SqlAlchemyCanonicalEntityRepository(_session_stub)
    _identity_index: IdentityIndex = SqlAlchemyIdentityIndex(_session_stub)
    _event_repo: ChangeEventRepository = SqlAlchemyChangeEventRepository(_session_stub)
    _batch_repo: ImportBatchRepository = SqlAlchemyImportBatchRepository(_session_stub)
    _pass_repo: ReconciliationPassRepository = SqlAlchemyReconciliationPassRepository(_session_stub)
    _error_repo: RecordErrorRepository = SqlAlchemyRecordErrorRepository(_session_stub)
