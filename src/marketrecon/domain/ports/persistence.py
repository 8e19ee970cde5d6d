"""Ports for persisting reconciliation state and its audit trail."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from marketrecon.domain.model import (
        CanonicalEntity,
        ChangeAction,
        ChangeEvent,
        IdentityKind,
        ImportBatch,
        ReconciliationPass,
        RecordErrorEntry,
    )


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class CanonicalEntityRepository(Repository["CanonicalEntity"], Protocol):
    """Canonical entity store, active and inactive."""

    def get(self, entity_id: str) -> CanonicalEntity | None: ...

    def query(
        self,
        *,
        active: bool | None = None,
        modified_since: datetime | None = None,
    ) -> Sequence[CanonicalEntity]: ...

    def unseen_in_pass(self, pass_sequence: int) -> Sequence[CanonicalEntity]:
        """Return active entities whose last match predates ``pass_sequence``."""
        ...


@runtime_checkable
class IdentityIndex(Protocol):
    """Persisted mapping from identity hints to the entity that owns them."""

    def lookup(self, kind: IdentityKind, value: str) -> str | None: ...

    def claim(self, kind: IdentityKind, value: str, entity_id: str) -> bool:
        """Register ``value`` for ``entity_id``; return False if another entity owns it."""
        ...


@runtime_checkable
class ChangeEventRepository(Repository["ChangeEvent"], Protocol):
    """Append-only audit log. ``query`` returns events in commit order."""

    def query(
        self,
        *,
        batch_id: str | None = None,
        entity_id: str | None = None,
        action: ChangeAction | None = None,
    ) -> Sequence[ChangeEvent]: ...


@runtime_checkable
class ImportBatchRepository(Repository["ImportBatch"], Protocol):
    def get(self, batch_id: str) -> ImportBatch | None: ...

    def query(self, *, pass_id: str | None = None) -> Sequence[ImportBatch]: ...


@runtime_checkable
class ReconciliationPassRepository(Repository["ReconciliationPass"], Protocol):
    def get(self, pass_id: str) -> ReconciliationPass | None: ...

    def open_pass(self) -> ReconciliationPass | None: ...

    def latest_sequence(self) -> int: ...


@runtime_checkable
class RecordErrorRepository(Repository["RecordErrorEntry"], Protocol):
    def query(
        self,
        *,
        batch_id: str | None = None,
        flagged_for_review: bool | None = None,
    ) -> Sequence[RecordErrorEntry]: ...
