"""Identity resolution of candidates against the persisted identity index.

Resolution order, first match wins:

1. external id
2. normalized canonical URL
3. normalized title + rounded price, accepted only when the candidate price lies
   within ``price_tolerance`` of the indexed entity's stored price

The two exact rules are cross-checked: if they point at different entities the
candidate is rejected with ``ConflictingIdentity`` instead of guessing. The resolver
never creates entities; after the caller creates one it must call ``register`` so
later candidates of the same batch can match it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from marketrecon.domain.model import IdentityKind, ListingField

from .errors import ConflictingIdentity
from .normalize import identity_hints, numeric_value

if TYPE_CHECKING:
    from marketrecon.domain.model import CandidateRecord, CanonicalEntity
    from marketrecon.domain.ports.persistence import CanonicalEntityRepository, IdentityIndex

    from .normalize import IdentityHints

log = logging.getLogger(__name__)


class ResolutionStatus(StrEnum):
    NEW = "new"
    RESOLVED = "resolved"


@dataclass(frozen=True, slots=True, kw_only=True)
class Resolution:
    """Outcome of resolving one candidate."""

    status: ResolutionStatus
    hints: IdentityHints
    entity: CanonicalEntity | None = None
    rule: IdentityKind | None = None
    reason: str | None = None

    @property
    def is_new(self) -> bool:
        return self.status is ResolutionStatus.NEW

    @property
    def entity_id(self) -> str | None:
        return self.entity.entity_id if self.entity is not None else None


def within_tolerance(candidate_price: float, stored_price: float, tolerance: float) -> bool:
    """Return whether two prices differ by at most ``tolerance`` of the stored one."""

    if stored_price == 0:
        return candidate_price == 0
    return abs(candidate_price - stored_price) <= tolerance * abs(stored_price)


@dataclass(slots=True, kw_only=True)
class IdentityResolver:
    index: IdentityIndex
    entities: CanonicalEntityRepository
    price_tolerance: float = 0.10
    price_bucket: int = 1000
    title_key_length: int = 80

    def hints_for(self, candidate: CandidateRecord) -> IdentityHints:
        return identity_hints(
            candidate,
            price_bucket=self.price_bucket,
            max_title_length=self.title_key_length,
        )

    def resolve(self, candidate: CandidateRecord) -> Resolution:
        """Resolve ``candidate`` to an existing entity or ``NEW``.

        Deterministic for a fixed index state. Raises ``ConflictingIdentity`` when
        the external id and canonical URL disagree.
        """

        hints = self.hints_for(candidate)
        by_external_id = self._lookup(IdentityKind.EXTERNAL_ID, hints.external_id)
        by_url = self._lookup(IdentityKind.CANONICAL_URL, hints.canonical_url)

        if by_external_id is not None and by_url is not None and by_external_id != by_url:
            raise ConflictingIdentity(
                f"external id {hints.external_id!r} resolves to {by_external_id} but "
                f"canonical url {hints.canonical_url!r} resolves to {by_url}",
                entity_ids=(by_external_id, by_url),
                rules=(IdentityKind.EXTERNAL_ID, IdentityKind.CANONICAL_URL),
            )

        if by_external_id is not None:
            return self._resolved(by_external_id, hints, IdentityKind.EXTERNAL_ID)

        if by_url is not None:
            entity = self._require(by_url)
            if _external_ids_disagree(hints, entity):
                raise ConflictingIdentity(
                    f"canonical url {hints.canonical_url!r} resolves to {by_url}, which "
                    f"carries external id {entity.external_id!r}, not {hints.external_id!r}",
                    entity_ids=(by_url,),
                    rules=(IdentityKind.CANONICAL_URL, IdentityKind.EXTERNAL_ID),
                )
            return Resolution(
                status=ResolutionStatus.RESOLVED,
                hints=hints,
                entity=entity,
                rule=IdentityKind.CANONICAL_URL,
                reason="canonical_url_match",
            )

        fallback = self._match_title_price(candidate, hints)
        if fallback is not None:
            return fallback

        return Resolution(status=ResolutionStatus.NEW, hints=hints, reason="no_match")

    def register(self, entity: CanonicalEntity, hints: IdentityHints) -> None:
        """Index ``hints`` for ``entity``; hints owned by other entities stay with them."""

        for kind, value in hints.items():
            if not self.index.claim(kind, value, entity.entity_id):
                log.debug(
                    "Identity hint %s=%s already owned by another entity; not re-pointing %s",
                    kind,
                    value,
                    entity.entity_id,
                )
                continue
            if kind is IdentityKind.EXTERNAL_ID and entity.external_id is None:
                entity.external_id = value
            elif kind is IdentityKind.CANONICAL_URL and entity.canonical_url is None:
                entity.canonical_url = value

    def _lookup(self, kind: IdentityKind, value: str | None) -> str | None:
        if not value:
            return None
        return self.index.lookup(kind, value)

    def _require(self, entity_id: str) -> CanonicalEntity:
        entity = self.entities.get(entity_id)
        if entity is None:
            raise LookupError(f"Identity index points at missing entity {entity_id}")
        return entity

    def _resolved(self, entity_id: str, hints: IdentityHints, rule: IdentityKind) -> Resolution:
        return Resolution(
            status=ResolutionStatus.RESOLVED,
            hints=hints,
            entity=self._require(entity_id),
            rule=rule,
            reason=f"{rule.value}_match",
        )

    def _match_title_price(
        self,
        candidate: CandidateRecord,
        hints: IdentityHints,
    ) -> Resolution | None:
        entity_id = self._lookup(IdentityKind.TITLE_PRICE, hints.title_price_key)
        if entity_id is None:
            return None
        entity = self._require(entity_id)
        if _external_ids_disagree(hints, entity):
            log.debug(
                "Title/price key %s matches %s but external ids differ",
                hints.title_price_key,
                entity_id,
            )
            return None

        candidate_price = numeric_value(candidate.source_fields.get(ListingField.PRICE))
        stored_price = numeric_value(entity.fields.get(ListingField.PRICE))
        if candidate_price is None or stored_price is None:
            return None
        if not within_tolerance(candidate_price, stored_price, self.price_tolerance):
            log.debug(
                "Title/price key %s matches %s but price %s is outside %.0f%% of %s",
                hints.title_price_key,
                entity_id,
                candidate_price,
                self.price_tolerance * 100,
                stored_price,
            )
            return None
        return Resolution(
            status=ResolutionStatus.RESOLVED,
            hints=hints,
            entity=entity,
            rule=IdentityKind.TITLE_PRICE,
            reason="title_price_match",
        )


def _external_ids_disagree(hints: IdentityHints, entity: CanonicalEntity) -> bool:
    return bool(
        hints.external_id
        and entity.external_id
        and hints.external_id != entity.external_id
    )
