"""Builders for listing candidates and canonical entities used across tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from marketrecon.domain.model import CandidateRecord, CanonicalEntity
from marketrecon.domain.reconciliation import content_hash

if TYPE_CHECKING:
    from marketrecon.domain.model import FieldValue

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class FixedClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


def make_candidate(
    *,
    external_id: str | None = None,
    canonical_url: str | None = None,
    title_price_key: str | None = None,
    confidence: float = 50.0,
    confidences: dict[str, float] | None = None,
    strategy: str = "css",
    defects: tuple[str, ...] = (),
    **fields: FieldValue,
) -> CandidateRecord:
    """Build a candidate whose fields all carry ``confidence`` unless overridden."""

    field_confidence = dict.fromkeys(fields, confidence)
    field_confidence.update(confidences or {})
    return CandidateRecord(
        source_fields=dict(fields),
        field_confidence=field_confidence,
        external_id=external_id,
        canonical_url=canonical_url,
        normalized_title_price_key=title_price_key,
        observed_at=BASE_TIME,
        source_strategy=strategy,
        defects=defects,
    )


def make_entity(
    entity_id: str = "123",
    *,
    external_id: str | None = None,
    canonical_url: str | None = None,
    confidence: float = 50.0,
    is_active: bool = True,
    **fields: FieldValue,
) -> CanonicalEntity:
    entity = CanonicalEntity(
        entity_id=entity_id,
        external_id=external_id,
        canonical_url=canonical_url,
        fields=dict(fields),
        field_confidence=dict.fromkeys(fields, confidence),
        first_seen_at=BASE_TIME,
        last_seen_at=BASE_TIME,
        updated_at=BASE_TIME,
        is_active=is_active,
    )
    entity.content_hash = content_hash(entity.fields)
    return entity
