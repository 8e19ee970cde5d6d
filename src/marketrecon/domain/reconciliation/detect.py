"""Change detection: turn one resolved candidate into entity mutations and events.

The detector is the only component that creates, updates, soft-deletes or restores
``CanonicalEntity`` objects. Every mutation it performs is mirrored by exactly one
``ChangeEvent`` so that replaying the audit log reproduces the stored state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from marketrecon.domain.model import CanonicalEntity, ChangeAction, ChangeEvent, new_id

from .errors import MalformedRecord
from .merge import FieldMerger
from .normalize import normalize_external_id

if TYPE_CHECKING:
    from datetime import datetime

    from marketrecon.domain.model import CandidateRecord, FieldValue
    from marketrecon.domain.ports.persistence import CanonicalEntityRepository

    from .merge import FieldChange
    from .normalize import IdentityHints
    from .resolve import IdentityResolver

log = logging.getLogger(__name__)

SWEEP_SOURCE = "reconciliation"


class DetectionOutcome(StrEnum):
    INSERTED = "inserted"
    UPDATED = "updated"
    DUPLICATE = "duplicate"
    RESTORED = "restored"


@dataclass(slots=True, kw_only=True)
class Detection:
    outcome: DetectionOutcome
    entity: CanonicalEntity
    events: list[ChangeEvent] = field(default_factory=list[ChangeEvent])


def change_percentage(old_value: FieldValue, new_value: FieldValue) -> float | None:
    """Relative change of a numeric field in percent, ``None`` for non-numeric values."""

    numbers = (int, float)
    if isinstance(old_value, bool) or isinstance(new_value, bool):
        return None
    if not isinstance(old_value, numbers) or not isinstance(new_value, numbers):
        return None
    if old_value == 0:
        return None
    return round((new_value - old_value) / abs(old_value) * 100, 2)


@dataclass(slots=True, kw_only=True)
class ChangeDetector:
    resolver: IdentityResolver
    merger: FieldMerger
    entities: CanonicalEntityRepository
    required_fields: tuple[str, ...] = ("title", "price")
    missed_pass_threshold: int = 3

    def detect(
        self,
        batch_id: str,
        candidate: CandidateRecord,
        *,
        at: datetime,
        pass_sequence: int | None = None,
    ) -> Detection:
        """Resolve, merge and emit events for ``candidate``.

        Raises ``MalformedRecord`` or ``ConflictingIdentity`` before touching any
        state, so a rejected candidate never leaves a partial mutation behind.
        """

        if candidate.defects:
            raise MalformedRecord("; ".join(candidate.defects))

        resolution = self.resolver.resolve(candidate)
        if resolution.hints.is_empty:
            raise MalformedRecord("candidate carries no identity hint")

        if resolution.entity is None:
            if not any(candidate.source_fields.get(name) is not None for name in self.required_fields):
                raise MalformedRecord(
                    "new candidate has none of the required fields: "
                    + ", ".join(self.required_fields)
                )
            return self._insert(batch_id, candidate, resolution.hints, at=at, pass_sequence=pass_sequence)

        entity = resolution.entity
        detection = Detection(outcome=DetectionOutcome.DUPLICATE, entity=entity)
        if not entity.is_active:
            entity.restore(at=at)
            detection.outcome = DetectionOutcome.RESTORED
            detection.events.append(
                ChangeEvent(
                    action=ChangeAction.RESTORE,
                    entity_id=entity.entity_id,
                    batch_id=batch_id,
                    old_value=False,
                    new_value=True,
                    occurred_at=at,
                    source=candidate.source_strategy,
                )
            )
            log.info("Restored entity %s (matched by %s)", entity.entity_id, resolution.rule)

        merged = self.merger.merge(entity, candidate)
        detection.events.extend(
            self._update_event(batch_id, entity.entity_id, change, at=at, source=candidate.source_strategy)
            for change in merged.changes
        )
        if merged.changed:
            entity.updated_at = at
            if detection.outcome is DetectionOutcome.DUPLICATE:
                detection.outcome = DetectionOutcome.UPDATED

        entity.mark_seen(seen_at=at, pass_sequence=pass_sequence)
        self.resolver.register(entity, resolution.hints)
        return detection

    def sweep(self, batch_id: str, pass_sequence: int, *, at: datetime) -> list[ChangeEvent]:
        """Count a miss for every active entity not seen in ``pass_sequence``.

        Entities reaching ``missed_pass_threshold`` consecutive misses are
        soft-deleted with one DELETE event each.
        """

        events: list[ChangeEvent] = []
        for entity in self.entities.unseen_in_pass(pass_sequence):
            misses = entity.record_miss()
            if misses < self.missed_pass_threshold:
                continue
            entity.deactivate(at=at)
            events.append(
                ChangeEvent(
                    action=ChangeAction.DELETE,
                    entity_id=entity.entity_id,
                    batch_id=batch_id,
                    old_value=True,
                    new_value=False,
                    occurred_at=at,
                    source=SWEEP_SOURCE,
                )
            )
            log.info("Soft-deleted entity %s after %d missed passes", entity.entity_id, misses)
        return events

    def _insert(
        self,
        batch_id: str,
        candidate: CandidateRecord,
        hints: IdentityHints,
        *,
        at: datetime,
        pass_sequence: int | None,
    ) -> Detection:
        entity = CanonicalEntity(
            entity_id=self._entity_id_for(candidate),
            first_seen_at=at,
            last_seen_at=at,
            updated_at=at,
            last_seen_pass=pass_sequence,
        )
        self.merger.merge(entity, candidate)
        self.entities.add(entity)
        self.resolver.register(entity, hints)
        event = ChangeEvent(
            action=ChangeAction.INSERT,
            entity_id=entity.entity_id,
            batch_id=batch_id,
            new_value=dict(entity.fields),
            occurred_at=at,
            source=candidate.source_strategy,
        )
        return Detection(outcome=DetectionOutcome.INSERTED, entity=entity, events=[event])

    def _entity_id_for(self, candidate: CandidateRecord) -> str:
        external_id = normalize_external_id(candidate.external_id)
        if external_id and self.entities.get(external_id) is None:
            return external_id
        return new_id()

    @staticmethod
    def _update_event(
        batch_id: str,
        entity_id: str,
        change: FieldChange,
        *,
        at: datetime,
        source: str,
    ) -> ChangeEvent:
        return ChangeEvent(
            action=ChangeAction.UPDATE,
            entity_id=entity_id,
            batch_id=batch_id,
            field_name=change.field_name,
            old_value=change.old_value,
            new_value=change.new_value,
            change_percentage=change_percentage(change.old_value, change.new_value),
            occurred_at=at,
            source=source,
        )
