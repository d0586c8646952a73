"""
Tests for milestone progress calculation.
"""

import pytest

from gigmarket.services.orders.progress import calculate_progress


def milestones(completed: int, total: int) -> list[dict]:
    return [
        {"title": f"Step {i + 1}", "status": "completed" if i < completed else "pending"}
        for i in range(total)
    ]


class TestCalculateProgress:
    """Test derivation of the completion percentage."""

    def test_no_milestones(self) -> None:
        assert calculate_progress([]) == 0

    def test_none_completed(self) -> None:
        assert calculate_progress(milestones(0, 3)) == 0

    def test_all_completed(self) -> None:
        assert calculate_progress(milestones(5, 5)) == 100

    @pytest.mark.parametrize(
        "completed,total,expected",
        [
            (2, 4, 50),
            (3, 4, 75),
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),
            (1, 6, 17),
        ],
    )
    def test_rounds_half_up(self, completed: int, total: int, expected: int) -> None:
        assert calculate_progress(milestones(completed, total)) == expected

    def test_in_progress_is_not_completed(self) -> None:
        records = [
            {"title": "Draft", "status": "in-progress"},
            {"title": "Final", "status": "completed"},
        ]
        assert calculate_progress(records) == 50

    def test_always_within_bounds(self) -> None:
        for total in range(1, 12):
            for completed in range(total + 1):
                assert 0 <= calculate_progress(milestones(completed, total)) <= 100
