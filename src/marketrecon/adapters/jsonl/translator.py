"""Translate JSON Lines payloads into candidate records."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from marketrecon.domain.model import DEFAULT_SOURCE_STRATEGY, CandidateRecord

if TYPE_CHECKING:
    from marketrecon.domain.model import FieldValue

    from .schema import CandidatePayload

log = getLogger(__name__)


def parse_candidate(
    payload: CandidatePayload,
    *,
    default_strategy: str = DEFAULT_SOURCE_STRATEGY,
    observed_at: datetime | None = None,
) -> CandidateRecord:
    """Build a ``CandidateRecord`` from a validated payload."""

    source_fields: dict[str, FieldValue] = {}
    field_confidence: dict[str, float] = {}
    for name, observation in payload.observations().items():
        source_fields[name] = observation.value
        field_confidence[name] = observation.confidence or 0.0

    timestamp = payload.observed_at or observed_at or datetime.now(tz=UTC)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)

    return CandidateRecord(
        source_fields=source_fields,
        field_confidence=field_confidence,
        external_id=payload.external_id,
        canonical_url=payload.canonical_url,
        normalized_title_price_key=payload.title_price_key,
        observed_at=timestamp,
        source_strategy=payload.source_strategy or default_strategy,
    )


def malformed_candidate(
    defect: str,
    *,
    default_strategy: str = DEFAULT_SOURCE_STRATEGY,
    observed_at: datetime | None = None,
) -> CandidateRecord:
    """Placeholder for an undecodable line so the batch report still counts it."""

    log.debug("Undecodable candidate: %s", defect)
    return CandidateRecord(
        observed_at=observed_at or datetime.now(tz=UTC),
        source_strategy=default_strategy,
        defects=(defect,),
    )
