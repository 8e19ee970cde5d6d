"""Pydantic models describing one line of a candidate JSON Lines export."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import cast

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ScalarValue = str | int | float | bool | None

DEFAULT_CONFIDENCE = 50.0


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class CandidateBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FieldObservation(CandidateBaseModel):
    """One extracted value together with the extracting strategy's confidence."""

    value: ScalarValue
    confidence: float | None = Field(default=None, ge=0)


class CandidatePayload(CandidateBaseModel):
    """Candidate as written by an extraction run.

    ``fields`` values are either bare scalars, which take ``confidence``, or
    ``{"value": ..., "confidence": ...}`` objects.
    """

    external_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("external_id", "externalId", "listing_id"),
    )
    canonical_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("canonical_url", "canonicalUrl"),
    )
    title_price_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("title_price_key", "normalizedTitlePriceKey"),
    )
    observed_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("observed_at", "observedAt", "scraped_at"),
    )
    source_strategy: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_strategy", "sourceStrategy", "strategy"),
    )
    confidence: float = Field(default=DEFAULT_CONFIDENCE, ge=0)
    fields: dict[str, FieldObservation | ScalarValue] = Field(default_factory=dict)

    _normalize_blanks = field_validator(
        "external_id",
        "canonical_url",
        "title_price_key",
        "source_strategy",
        mode="before",
    )(_blank_to_none)

    @field_validator("external_id", mode="before")
    @classmethod
    def _stringify_external_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("fields", mode="before")
    @classmethod
    def _require_mapping(cls, value: object) -> object:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("fields must be an object")  # noqa: TRY004
        return dict(cast(Mapping[str, object], value))

    def observations(self) -> dict[str, FieldObservation]:
        """Return every field as an observation with its effective confidence."""

        result: dict[str, FieldObservation] = {}
        for name, raw in self.fields.items():
            if isinstance(raw, FieldObservation):
                confidence = raw.confidence if raw.confidence is not None else self.confidence
                result[name] = FieldObservation(value=raw.value, confidence=confidence)
            else:
                result[name] = FieldObservation(value=raw, confidence=self.confidence)
        return result
