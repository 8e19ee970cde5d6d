from __future__ import annotations

from marketrecon.domain.model import ChangeAction, ChangeEvent
from marketrecon.domain.reconciliation.insights import summarize_notable_changes


def _update(entity_id: str, field_name: str, old: object, new: object) -> ChangeEvent:
    return ChangeEvent(
        action=ChangeAction.UPDATE,
        entity_id=entity_id,
        batch_id="b1",
        field_name=field_name,
        old_value=old,
        new_value=new,
    )


def test_price_drop_at_threshold_is_notable() -> None:
    summary = summarize_notable_changes(
        [
            _update("a", "price", 50000, 40000),
            _update("b", "price", 50000, 45000),
            _update("c", "price", 50000, 60000),
        ]
    )

    assert [(change.entity_id, change.change_percentage) for change in summary.price_drops] == [
        ("a", -20.0)
    ]


def test_revenue_moves_in_either_direction() -> None:
    summary = summarize_notable_changes(
        [
            _update("a", "monthly_revenue", 10000, 4000),
            _update("b", "monthly_revenue", 1000, 6000),
            _update("c", "monthly_revenue", 1000, 1500),
        ],
        revenue_change_amount=5000,
    )

    assert [change.entity_id for change in summary.revenue_changes] == ["a", "b"]


def test_category_change_requires_known_previous_category() -> None:
    summary = summarize_notable_changes(
        [
            _update("a", "category", "content", "saas"),
            _update("b", "category", None, "saas"),
        ]
    )

    assert [change.entity_id for change in summary.category_changes] == ["a"]


def test_non_update_events_and_other_fields_are_ignored() -> None:
    events = [
        ChangeEvent(action=ChangeAction.INSERT, entity_id="a", batch_id="b1", new_value={"price": 1}),
        ChangeEvent(action=ChangeAction.DELETE, entity_id="a", batch_id="b1"),
        _update("a", "title", "Old", "New"),
    ]

    assert summarize_notable_changes(events).total == 0


def test_custom_thresholds() -> None:
    summary = summarize_notable_changes(
        [_update("a", "price", 100, 95)],
        price_drop_percent=5,
    )

    assert summary.total == 1
