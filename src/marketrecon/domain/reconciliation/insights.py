"""Notable changes within a pass: price drops, revenue moves, category changes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from marketrecon.domain.model import ChangeAction, ListingField

from .normalize import numeric_value

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marketrecon.domain.model import ChangeEvent


@dataclass(frozen=True, slots=True)
class NotableChange:
    entity_id: str
    field_name: str
    old_value: object
    new_value: object
    change_percentage: float | None = None


@dataclass(frozen=True, slots=True)
class NotableChanges:
    price_drops: tuple[NotableChange, ...] = ()
    revenue_changes: tuple[NotableChange, ...] = ()
    category_changes: tuple[NotableChange, ...] = ()

    @property
    def total(self) -> int:
        return len(self.price_drops) + len(self.revenue_changes) + len(self.category_changes)


def summarize_notable_changes(
    events: Iterable[ChangeEvent],
    *,
    price_drop_percent: float = 20.0,
    revenue_change_amount: float = 5000.0,
) -> NotableChanges:
    """Classify UPDATE events worth alerting on.

    A price drop counts when the price fell by at least ``price_drop_percent``
    percent, a revenue change when monthly revenue moved by at least
    ``revenue_change_amount`` in either direction. Any change of an already known
    category counts.
    """

    price_drops: list[NotableChange] = []
    revenue_changes: list[NotableChange] = []
    category_changes: list[NotableChange] = []

    for event in events:
        if event.action is not ChangeAction.UPDATE or event.field_name is None:
            continue
        old = numeric_value(event.old_value)  # pyright: ignore[reportArgumentType]
        new = numeric_value(event.new_value)  # pyright: ignore[reportArgumentType]
        match event.field_name:
            case ListingField.PRICE:
                if old is None or new is None or old <= 0 or new >= old:
                    continue
                drop = (old - new) / old * 100
                if drop >= price_drop_percent:
                    price_drops.append(_notable(event, -round(drop, 2)))
            case ListingField.MONTHLY_REVENUE:
                if old is None or new is None:
                    continue
                if abs(new - old) >= revenue_change_amount:
                    revenue_changes.append(_notable(event, event.change_percentage))
            case ListingField.CATEGORY:
                if event.old_value is not None and event.old_value != event.new_value:
                    category_changes.append(_notable(event, None))
            case _:
                continue

    return NotableChanges(
        price_drops=tuple(price_drops),
        revenue_changes=tuple(revenue_changes),
        category_changes=tuple(category_changes),
    )


def _notable(event: ChangeEvent, percentage: float | None) -> NotableChange:
    return NotableChange(
        entity_id=event.entity_id,
        field_name=event.field_name or "",
        old_value=event.old_value,
        new_value=event.new_value,
        change_percentage=percentage,
    )
