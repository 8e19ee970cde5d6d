from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker

from marketrecon.adapters.sqlalchemy import start_mappers
from marketrecon.adapters.sqlalchemy.migrations import upgrade_head
from marketrecon.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyReconciliationUnitOfWork,
    shutdown,
    startup,
)
from marketrecon.config import ReconciliationConfig
from marketrecon.domain.reconciliation import BatchPersistenceManager
from tests.helpers.listings import FixedClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine: Engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=sqlite_engine, future=True)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyReconciliationUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemyReconciliationUnitOfWork:
        return SqlAlchemyReconciliationUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def reconciliation_config() -> ReconciliationConfig:
    return ReconciliationConfig(batch_size=50)


@pytest.fixture
def manager(
    sqlite_unit_of_work: Callable[[], SqlAlchemyReconciliationUnitOfWork],
    reconciliation_config: ReconciliationConfig,
    clock: FixedClock,
) -> BatchPersistenceManager:
    return BatchPersistenceManager(
        unit_of_work_factory=sqlite_unit_of_work,
        config=reconciliation_config,
        clock=clock,
    )
