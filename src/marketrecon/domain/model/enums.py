"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class ChangeAction(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"


class IdentityKind(StrEnum):
    """Identity hint kinds, in resolution priority order."""

    EXTERNAL_ID = "external_id"
    CANONICAL_URL = "canonical_url"
    TITLE_PRICE = "title_price"


class BatchStatus(StrEnum):
    RUNNING = "running"
    COMMITTED = "committed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PassStatus(StrEnum):
    OPEN = "open"
    COMPLETED = "completed"


class RecordErrorKind(StrEnum):
    MALFORMED_RECORD = "malformed_record"
    CONFLICTING_IDENTITY = "conflicting_identity"


class ListingField(StrEnum):
    """Well-known listing fields. Other field names are carried through untouched."""

    TITLE = "title"
    PRICE = "price"
    MONTHLY_REVENUE = "monthly_revenue"
    MONTHLY_PROFIT = "monthly_profit"
    PROFIT_MULTIPLE = "profit_multiple"
    REVENUE_MULTIPLE = "revenue_multiple"
    CATEGORY = "category"
    URL = "url"
