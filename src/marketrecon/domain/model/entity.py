"""
Canonical listing entity:
the durable, deduplicated record of one real-world listing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from collections.abc import Mapping

type FieldValue = str | int | float | bool | None


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(eq=False, kw_only=True)
class CanonicalEntity:
    """Current merged state of one listing.

    ``fields`` and ``field_confidence`` are replaced rather than mutated in place so
    that persistence adapters observe every change as an attribute assignment.
    """

    entity_id: str = field(default_factory=new_id)
    external_id: str | None = None
    canonical_url: str | None = None
    fields: dict[str, FieldValue] = field(default_factory=dict[str, "FieldValue"])
    field_confidence: dict[str, float] = field(default_factory=dict[str, float])
    content_hash: str = ""
    first_seen_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    is_active: bool = True
    missed_pass_count: int = 0
    last_seen_pass: int | None = None

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def confidence_for(self, name: str) -> float:
        return self.field_confidence.get(name, 0.0)

    def set_field(self, name: str, value: FieldValue, confidence: float) -> None:
        self.fields = {**self.fields, name: value}
        self.field_confidence = {**self.field_confidence, name: confidence}

    def set_confidence(self, name: str, confidence: float) -> None:
        self.field_confidence = {**self.field_confidence, name: confidence}

    def replace_fields(self, fields: Mapping[str, FieldValue]) -> None:
        self.fields = dict(fields)

    def mark_seen(self, *, seen_at: datetime, pass_sequence: int | None) -> None:
        """Record a match in the current pass and clear the miss streak."""

        self.last_seen_at = seen_at
        self.missed_pass_count = 0
        if pass_sequence is not None:
            self.last_seen_pass = pass_sequence

    def record_miss(self) -> int:
        self.missed_pass_count += 1
        return self.missed_pass_count

    def deactivate(self, *, at: datetime) -> None:
        self.is_active = False
        self.updated_at = at

    def restore(self, *, at: datetime) -> None:
        self.is_active = True
        self.missed_pass_count = 0
        self.updated_at = at
