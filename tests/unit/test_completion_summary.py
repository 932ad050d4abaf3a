import pytest

from crewboard.types import ChecklistItemSpec, CompletionSummary, StepSpec, normalize_steps, percent


@pytest.mark.parametrize(
    "done,total,expected",
    [(0, 0, 0), (0, 3, 0), (1, 3, 33), (2, 3, 67), (3, 3, 100), (1, 8, 13), (3, 8, 38), (5, 8, 63), (1, 200, 1)],
)
def test_percentage_rounds_steps_ratio(done: int, total: int, expected: int) -> None:
    summary = CompletionSummary(session_id=1, steps_completed=done, steps_total=total, items_checked=0, items_total=0)
    assert summary.percentage == expected
    assert summary.remaining_steps == total - done


def test_items_percentage_is_independent_of_steps() -> None:
    summary = CompletionSummary(session_id=1, steps_completed=0, steps_total=2, items_checked=3, items_total=4)
    assert summary.percentage == 0
    assert summary.items_percentage == 75


def test_normalize_steps_fills_orders_and_sorts() -> None:
    steps = normalize_steps(
        [
            StepSpec(title="Dust", step_order=5),
            StepSpec(title="Sweep", checklist=[ChecklistItemSpec(item_text="a"), ChecklistItemSpec(item_text="b")]),
            StepSpec(title="Mop", step_order=2),
        ]
    )
    assert [(step.title, step.step_order) for step in steps] == [("Mop", 2), ("Dust", 5), ("Sweep", 6)]
    assert [item.item_order for item in steps[2].checklist] == [1, 2]


def test_duplicate_orders_are_rejected() -> None:
    with pytest.raises(ValueError):
        normalize_steps([StepSpec(title="A", step_order=1), StepSpec(title="B", step_order=1)])
    with pytest.raises(ValueError):
        StepSpec(
            title="A",
            checklist=[ChecklistItemSpec(item_text="x", item_order=1), ChecklistItemSpec(item_text="y", item_order=1)],
        )


@pytest.mark.parametrize("part,total,expected", [(1, 8, 13), (7, 8, 88), (1, 40, 3), (1, 400, 0), (0, 0, 0)])
def test_percent_rounds_halves_up(part: int, total: int, expected: int) -> None:
    assert percent(part, total) == expected
    summary = CompletionSummary(session_id=1, steps_completed=0, steps_total=1, items_checked=part, items_total=total)
    assert summary.items_percentage == expected
