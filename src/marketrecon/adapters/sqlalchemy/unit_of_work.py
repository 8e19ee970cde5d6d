"""SQLAlchemy-backed unit of work for reconciliation batches."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from marketrecon.adapters.sqlalchemy.mappings import start_mappers
from marketrecon.adapters.sqlalchemy.migrations import upgrade_head
from marketrecon.adapters.sqlalchemy.repositories import (
    SqlAlchemyCanonicalEntityRepository,
    SqlAlchemyChangeEventRepository,
    SqlAlchemyIdentityIndex,
    SqlAlchemyImportBatchRepository,
    SqlAlchemyReconciliationPassRepository,
    SqlAlchemyRecordErrorRepository,
)
from marketrecon.config import get_database_uri
from marketrecon.domain.ports.unit_of_work import (
    ReconciliationRepositories,
    RepositoryCollection,
)
from marketrecon.domain.reconciliation.errors import TransientStorageError

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call marketrecon.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Initialise the SQLAlchemy engine, migrate the schema and build the session factory."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine or create_engine(database_uri or get_database_uri(), future=True)
    start_mappers()
    upgrade_head(engine=resolved_engine)
    _STATE.engine = resolved_engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections.

    Any ``SQLAlchemyError`` escaping the block rolls the session back and is
    re-raised as ``TransientStorageError`` so the domain never sees driver errors.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self.session_factory: sessionmaker[Session] = session_factory or _STATE.session_factory
        self._session: Session | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        try:
            self.session = self.session_factory()
            self._repositories = self._build_repositories(self.session)
        except SQLAlchemyError as exc:
            raise TransientStorageError(f"Could not open storage session: {exc}") from exc
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        try:
            if exc_type is not None:
                self.rollback()
        except SQLAlchemyError as rollback_error:
            raise TransientStorageError(f"Rollback failed: {rollback_error}") from rollback_error
        finally:
            self.session.close()
            self.session = None
        if isinstance(exc_value, SQLAlchemyError):
            log.error("Rolled back unit of work after storage error: %s", exc_value)
            raise TransientStorageError(str(exc_value)) from exc_value
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyReconciliationUnitOfWork(BaseSqlAlchemyUnitOfWork[ReconciliationRepositories]):
    """Unit of work managing one reconciliation transaction."""

    def _build_repositories(self, session: Session) -> ReconciliationRepositories:
        return ReconciliationRepositories(
            entities=SqlAlchemyCanonicalEntityRepository(session),
            identity_index=SqlAlchemyIdentityIndex(session),
            change_events=SqlAlchemyChangeEventRepository(session),
            batches=SqlAlchemyImportBatchRepository(session),
            passes=SqlAlchemyReconciliationPassRepository(session),
            record_errors=SqlAlchemyRecordErrorRepository(session),
        )


if TYPE_CHECKING:
    from marketrecon.domain.ports.unit_of_work import ReconciliationUnitOfWork

    _uow_check: ReconciliationUnitOfWork = SqlAlchemyReconciliationUnitOfWork()
