"""Domain port definitions for adapters."""

from __future__ import annotations

from .fetching import CandidateSource
from .persistence import (
    CanonicalEntityRepository,
    ChangeEventRepository,
    IdentityIndex,
    ImportBatchRepository,
    ReconciliationPassRepository,
    RecordErrorRepository,
    Repository,
)
from .unit_of_work import (
    ReconciliationRepositories,
    ReconciliationUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "CandidateSource",
    "CanonicalEntityRepository",
    "ChangeEventRepository",
    "IdentityIndex",
    "ImportBatchRepository",
    "ReconciliationPassRepository",
    "ReconciliationRepositories",
    "ReconciliationUnitOfWork",
    "RecordErrorRepository",
    "Repository",
    "RepositoryCollection",
    "UnitOfWork",
]
