"""Append-only audit log: sequencing, statistics and replay."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from marketrecon.domain.model import ChangeAction

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from marketrecon.domain.model import CanonicalEntity, ChangeEvent, FieldValue
    from marketrecon.domain.ports.persistence import ChangeEventRepository

log = logging.getLogger(__name__)


@dataclass(slots=True)
class AuditLog:
    """Writer for the events of one batch.

    Events receive consecutive ``sequence`` numbers in the order they are appended,
    which is the order their source candidates were processed.
    """

    repository: ChangeEventRepository
    batch_id: str
    appended: list[ChangeEvent] = field(default_factory=list["ChangeEvent"])

    def append(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            if event.batch_id != self.batch_id:
                raise ValueError(
                    f"Event for batch {event.batch_id} appended to audit log of {self.batch_id}"
                )
            event.sequence = len(self.appended)
            self.repository.add(event)
            self.appended.append(event)


def action_counts(events: Iterable[ChangeEvent]) -> dict[ChangeAction, int]:
    """Count events per action; every action is present in the result."""

    counter = Counter(event.action for event in events)
    return {action: counter.get(action, 0) for action in ChangeAction}


@dataclass(slots=True)
class ReplayedEntity:
    entity_id: str
    fields: dict[str, FieldValue] = field(default_factory=dict[str, "FieldValue"])
    is_active: bool = True


def replay_events(events: Iterable[ChangeEvent]) -> dict[str, ReplayedEntity]:
    """Rebuild entity ``fields`` and activity from events given in commit order."""

    state: dict[str, ReplayedEntity] = {}
    for event in events:
        if event.action is ChangeAction.INSERT:
            if event.entity_id in state:
                raise ValueError(f"Entity {event.entity_id} inserted twice")
            initial = event.new_value if isinstance(event.new_value, dict) else {}
            state[event.entity_id] = ReplayedEntity(entity_id=event.entity_id, fields=dict(initial))
            continue

        replayed = state.get(event.entity_id)
        if replayed is None:
            raise ValueError(f"{event.action} event for {event.entity_id} precedes its INSERT")
        match event.action:
            case ChangeAction.UPDATE:
                if event.field_name is None:
                    raise ValueError(f"UPDATE event for {event.entity_id} has no field name")
                replayed.fields[event.field_name] = event.new_value  # pyright: ignore[reportArgumentType]
            case ChangeAction.DELETE:
                replayed.is_active = False
            case ChangeAction.RESTORE:
                replayed.is_active = True
    return state


def verify_replay(
    entities: Sequence[CanonicalEntity],
    events: Iterable[ChangeEvent],
) -> list[str]:
    """Compare stored entities with the replayed log; return human-readable mismatches."""

    try:
        replayed = replay_events(events)
    except ValueError as exc:
        return [str(exc)]

    mismatches: list[str] = []
    stored: Mapping[str, CanonicalEntity] = {entity.entity_id: entity for entity in entities}
    for entity_id in sorted(stored.keys() - replayed.keys()):
        mismatches.append(f"{entity_id}: stored but never inserted in the audit log")
    for entity_id in sorted(replayed.keys() - stored.keys()):
        mismatches.append(f"{entity_id}: present in the audit log but not stored")
    for entity_id in sorted(stored.keys() & replayed.keys()):
        entity = stored[entity_id]
        expected = replayed[entity_id]
        if entity.fields != expected.fields:
            differing = sorted(
                name
                for name in entity.fields.keys() | expected.fields.keys()
                if entity.fields.get(name) != expected.fields.get(name)
            )
            mismatches.append(f"{entity_id}: fields differ ({', '.join(differing)})")
        if entity.is_active != expected.is_active:
            mismatches.append(
                f"{entity_id}: stored is_active={entity.is_active}, replay gives {expected.is_active}"
            )
    if mismatches:
        log.debug("Replay found %d mismatches", len(mismatches))
    return mismatches
