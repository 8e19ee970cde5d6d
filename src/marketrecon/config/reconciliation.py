"""Reconciliation defaults and tunables."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int
from .errors import InvalidSettingError

DEFAULT_BATCH_SIZE = 250
DEFAULT_PRICE_TOLERANCE = 0.10
DEFAULT_CONFIDENCE_EPSILON = 0.0
DEFAULT_MISSED_PASS_THRESHOLD = 3
DEFAULT_PRICE_BUCKET = 1000
DEFAULT_TITLE_KEY_LENGTH = 80
DEFAULT_REQUIRED_FIELDS = ("title", "price")
DEFAULT_PRICE_DROP_PERCENT = 20.0
DEFAULT_REVENUE_CHANGE_AMOUNT = 5000.0


@dataclass(frozen=True, slots=True)
class ReconciliationConfig:
    """Knobs for identity resolution, merging and soft deletion."""

    batch_size: int = DEFAULT_BATCH_SIZE
    price_tolerance: float = DEFAULT_PRICE_TOLERANCE
    confidence_epsilon: float = DEFAULT_CONFIDENCE_EPSILON
    missed_pass_threshold: int = DEFAULT_MISSED_PASS_THRESHOLD
    price_bucket: int = DEFAULT_PRICE_BUCKET
    title_key_length: int = DEFAULT_TITLE_KEY_LENGTH
    required_fields: tuple[str, ...] = DEFAULT_REQUIRED_FIELDS
    price_drop_percent: float = DEFAULT_PRICE_DROP_PERCENT
    revenue_change_amount: float = DEFAULT_REVENUE_CHANGE_AMOUNT

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise InvalidSettingError("batch_size", self.batch_size, "must be at least 1")
        if self.price_tolerance < 0:
            raise InvalidSettingError("price_tolerance", self.price_tolerance, "must be non-negative")
        if self.confidence_epsilon < 0:
            raise InvalidSettingError("confidence_epsilon", self.confidence_epsilon, "must be non-negative")
        if self.missed_pass_threshold < 1:
            raise InvalidSettingError(
                "missed_pass_threshold", self.missed_pass_threshold, "must be at least 1"
            )
        if self.price_bucket < 1:
            raise InvalidSettingError("price_bucket", self.price_bucket, "must be at least 1")
        if self.title_key_length < 1:
            raise InvalidSettingError("title_key_length", self.title_key_length, "must be at least 1")


def get_reconciliation_config() -> ReconciliationConfig:
    return ReconciliationConfig(
        batch_size=env_int("MARKETRECON_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        price_tolerance=env_float("MARKETRECON_PRICE_TOLERANCE", DEFAULT_PRICE_TOLERANCE),
        confidence_epsilon=env_float(
            "MARKETRECON_CONFIDENCE_EPSILON", DEFAULT_CONFIDENCE_EPSILON
        ),
        missed_pass_threshold=env_int(
            "MARKETRECON_MISSED_PASS_THRESHOLD", DEFAULT_MISSED_PASS_THRESHOLD
        ),
        price_bucket=env_int("MARKETRECON_PRICE_BUCKET", DEFAULT_PRICE_BUCKET),
        title_key_length=env_int("MARKETRECON_TITLE_KEY_LENGTH", DEFAULT_TITLE_KEY_LENGTH),
        price_drop_percent=env_float("MARKETRECON_PRICE_DROP_PERCENT", DEFAULT_PRICE_DROP_PERCENT),
        revenue_change_amount=env_float(
            "MARKETRECON_REVENUE_CHANGE_AMOUNT", DEFAULT_REVENUE_CHANGE_AMOUNT
        ),
    )
