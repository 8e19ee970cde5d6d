"""Confidence-based field merging.

A stored value is only replaced by a strictly more confident one
(``candidate > stored + epsilon``), so equally confident extraction strategies do
not flap a value back and forth between passes. Derived numeric fields are
recomputed from their inputs whenever an input changed, unless the stored derived
value was supplied directly with higher confidence than its inputs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from marketrecon.domain.model import ListingField

from .hashing import content_hash
from .normalize import numeric_value

if TYPE_CHECKING:
    from collections.abc import Mapping

    from marketrecon.domain.model import CandidateRecord, CanonicalEntity, FieldValue

log = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


@dataclass(frozen=True, slots=True)
class FieldChange:
    """One stored field value that actually changed."""

    field_name: str
    old_value: FieldValue
    new_value: FieldValue
    confidence: float
    derived: bool = False


@dataclass(slots=True)
class MergeResult:
    entity: CanonicalEntity
    changes: list[FieldChange] = field(default_factory=list[FieldChange])

    @property
    def changed_fields(self) -> tuple[str, ...]:
        return tuple(change.field_name for change in self.changes)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


type DerivedComputation = Callable[[Mapping[str, FieldValue]], FieldValue]


@dataclass(frozen=True, slots=True)
class DerivedField:
    name: str
    inputs: tuple[str, ...]
    compute: DerivedComputation


def _annual_multiple(denominator_field: str) -> DerivedComputation:
    def compute(fields: Mapping[str, FieldValue]) -> FieldValue:
        price = numeric_value(fields.get(ListingField.PRICE))
        monthly = numeric_value(fields.get(denominator_field))
        if price is None or monthly is None or monthly == 0:
            return None
        return round(price / (monthly * MONTHS_PER_YEAR), 2)

    return compute


DEFAULT_DERIVED_FIELDS: tuple[DerivedField, ...] = (
    DerivedField(
        name=ListingField.PROFIT_MULTIPLE,
        inputs=(ListingField.PRICE, ListingField.MONTHLY_PROFIT),
        compute=_annual_multiple(ListingField.MONTHLY_PROFIT),
    ),
    DerivedField(
        name=ListingField.REVENUE_MULTIPLE,
        inputs=(ListingField.PRICE, ListingField.MONTHLY_REVENUE),
        compute=_annual_multiple(ListingField.MONTHLY_REVENUE),
    ),
)


def values_equal(left: FieldValue, right: FieldValue) -> bool:
    """Strict equality that keeps ``True`` and ``1`` apart."""

    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


@dataclass(slots=True, kw_only=True)
class FieldMerger:
    epsilon: float = 0.0
    derived_fields: tuple[DerivedField, ...] = DEFAULT_DERIVED_FIELDS

    def merge(self, entity: CanonicalEntity, candidate: CandidateRecord) -> MergeResult:
        """Merge ``candidate`` into ``entity`` in place and re-fingerprint it.

        Idempotent: merging the same candidate into the resulting state again
        yields no changes.
        """

        result = MergeResult(entity=entity)
        for name in sorted(candidate.source_fields):
            value = candidate.source_fields[name]
            if value is None:
                continue
            change = self._merge_field(entity, name, value, candidate.confidence_for(name))
            if change is not None:
                result.changes.append(change)

        changed_names = set(result.changed_fields)
        for derived in self.derived_fields:
            if not changed_names.intersection(derived.inputs):
                continue
            change = self._recompute(entity, derived)
            if change is not None:
                result.changes.append(change)

        entity.content_hash = content_hash(entity.fields)
        return result

    def _merge_field(
        self,
        entity: CanonicalEntity,
        name: str,
        value: FieldValue,
        confidence: float,
    ) -> FieldChange | None:
        if not entity.has_field(name):
            entity.set_field(name, value, confidence)
            return FieldChange(field_name=name, old_value=None, new_value=value, confidence=confidence)

        stored_confidence = entity.confidence_for(name)
        if confidence <= stored_confidence + self.epsilon:
            return None

        old_value = entity.fields[name]
        if values_equal(old_value, value):
            entity.set_confidence(name, confidence)
            return None
        entity.set_field(name, value, confidence)
        return FieldChange(field_name=name, old_value=old_value, new_value=value, confidence=confidence)

    def _recompute(self, entity: CanonicalEntity, derived: DerivedField) -> FieldChange | None:
        value = derived.compute(entity.fields)
        if value is None:
            return None
        confidence = min(entity.confidence_for(name) for name in derived.inputs)
        if entity.has_field(derived.name):
            if entity.confidence_for(derived.name) > confidence + self.epsilon:
                log.debug(
                    "Keeping directly supplied %s for %s over recomputed value",
                    derived.name,
                    entity.entity_id,
                )
                return None
            old_value = entity.fields[derived.name]
            if values_equal(old_value, value):
                return None
        else:
            old_value = None
        entity.set_field(derived.name, value, confidence)
        return FieldChange(
            field_name=derived.name,
            old_value=old_value,
            new_value=value,
            confidence=confidence,
            derived=True,
        )
