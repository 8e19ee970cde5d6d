"""Candidate records produced by the extraction subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from .entity import FieldValue

DEFAULT_SOURCE_STRATEGY = "unknown"


@dataclass(slots=True, kw_only=True)
class CandidateRecord:
    """One extraction result for one listing in one pass.

    Ephemeral: only its effect on a ``CanonicalEntity`` is ever persisted.
    ``defects`` lists problems found while decoding the raw payload; a record with
    defects is rejected as malformed by the reconciliation engine.
    """

    source_fields: dict[str, FieldValue] = field(default_factory=dict[str, FieldValue])
    field_confidence: dict[str, float] = field(default_factory=dict[str, float])
    external_id: str | None = None
    canonical_url: str | None = None
    normalized_title_price_key: str | None = None
    observed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    source_strategy: str = DEFAULT_SOURCE_STRATEGY
    defects: tuple[str, ...] = ()

    def confidence_for(self, name: str) -> float:
        return self.field_confidence.get(name, 0.0)
