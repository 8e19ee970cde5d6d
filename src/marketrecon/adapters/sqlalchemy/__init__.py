"""SQLAlchemy adapter package for marketrecon."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyCanonicalEntityRepository,
    SqlAlchemyChangeEventRepository,
    SqlAlchemyIdentityIndex,
    SqlAlchemyImportBatchRepository,
    SqlAlchemyReconciliationPassRepository,
    SqlAlchemyRecordErrorRepository,
)
from .unit_of_work import (
    SqlAlchemyReconciliationUnitOfWork,
    StartupError,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyCanonicalEntityRepository",
    "SqlAlchemyChangeEventRepository",
    "SqlAlchemyIdentityIndex",
    "SqlAlchemyImportBatchRepository",
    "SqlAlchemyReconciliationPassRepository",
    "SqlAlchemyReconciliationUnitOfWork",
    "SqlAlchemyRecordErrorRepository",
    "StartupError",
    "create_all_tables",
    "is_started",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
