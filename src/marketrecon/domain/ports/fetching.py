"""Ports for receiving candidate records from the extraction subsystem."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marketrecon.domain.model import CandidateRecord


@runtime_checkable
class CandidateSource(Protocol):
    """Callable port yielding one pass worth of candidate records, in order."""

    def __call__(self, *, max_records: int | None = None) -> Iterable[CandidateRecord]: ...


__all__ = ["CandidateSource"]
