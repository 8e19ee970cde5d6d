"""Deterministic identity hint normalization.

Every function here is pure: the same candidate always yields the same hints, so
dedup keys survive process restarts once persisted in the identity index.
"""

from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from marketrecon.domain.model import IdentityKind, ListingField

if TYPE_CHECKING:
    from marketrecon.domain.model import CandidateRecord, FieldValue

_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True, slots=True)
class IdentityHints:
    """Normalized identity hints of one candidate."""

    external_id: str | None = None
    canonical_url: str | None = None
    title_price_key: str | None = None

    def items(self) -> tuple[tuple[IdentityKind, str], ...]:
        """Return present hints in resolution priority order."""

        pairs = (
            (IdentityKind.EXTERNAL_ID, self.external_id),
            (IdentityKind.CANONICAL_URL, self.canonical_url),
            (IdentityKind.TITLE_PRICE, self.title_price_key),
        )
        return tuple((kind, value) for kind, value in pairs if value)

    @property
    def is_empty(self) -> bool:
        return not self.items()


def normalize_external_id(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def normalize_url(value: str | None) -> str | None:
    """Normalize a listing URL to ``host/path``.

    Scheme, default port, query string, fragment and trailing slashes are dropped
    and the result is lower-cased, so ``HTTPS://Example.com/Listing/1/`` and
    ``https://example.com/listing/1?ref=x`` normalize identically.
    """

    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    if "://" not in stripped:
        stripped = f"https://{stripped}"
    try:
        parts = urlsplit(stripped)
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    if not host:
        return None
    try:
        port = parts.port
    except ValueError:
        port = None
    scheme = parts.scheme.lower()
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"
    path = parts.path.rstrip("/").lower()
    return f"{host}{path}"


def normalize_title(value: str | None, *, max_length: int = 80) -> str | None:
    if value is None:
        return None
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(char for char in decomposed if not unicodedata.combining(char))
    collapsed = _NON_ALNUM.sub(" ", ascii_only.casefold()).strip()
    if not collapsed:
        return None
    return collapsed[:max_length].rstrip()


def numeric_value(value: FieldValue) -> float | None:
    """Return ``value`` as a finite float, or None for non-numeric values."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int | float):
        number = float(value)
    else:
        try:
            number = float(str(value).replace(",", "").replace("$", "").strip())
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


def rounded_price(price: float, *, bucket: int) -> int:
    return int(round(price / bucket)) * bucket


def title_price_key(
    title: FieldValue,
    price: FieldValue,
    *,
    bucket: int = 1000,
    max_title_length: int = 80,
) -> str | None:
    """Composite fallback key of normalized title and rounded price."""

    if not isinstance(title, str):
        return None
    normalized = normalize_title(title, max_length=max_title_length)
    number = numeric_value(price)
    if normalized is None or number is None:
        return None
    return f"{normalized}|{rounded_price(number, bucket=bucket)}"


def normalize_title_price_key(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip().casefold()
    return stripped or None


def identity_hints(
    candidate: CandidateRecord,
    *,
    price_bucket: int = 1000,
    max_title_length: int = 80,
) -> IdentityHints:
    """Normalize the candidate's hints, deriving the title/price key when absent."""

    key = normalize_title_price_key(candidate.normalized_title_price_key)
    if key is None:
        key = title_price_key(
            candidate.source_fields.get(ListingField.TITLE),
            candidate.source_fields.get(ListingField.PRICE),
            bucket=price_bucket,
            max_title_length=max_title_length,
        )
    url = candidate.canonical_url
    if url is None:
        raw_url = candidate.source_fields.get(ListingField.URL)
        url = raw_url if isinstance(raw_url, str) else None
    return IdentityHints(
        external_id=normalize_external_id(candidate.external_id),
        canonical_url=normalize_url(url),
        title_price_key=key,
    )
