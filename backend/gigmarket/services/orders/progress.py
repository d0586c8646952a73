"""Milestone progress calculation."""

from typing import Any, Mapping, Sequence

from gigmarket.services.orders.enums import MilestoneStatus


def calculate_progress(milestones: Sequence[Mapping[str, Any]]) -> int:
    """
    Derive an order's completion percentage from its milestones.

    Args:
        milestones: Milestone records, each with a ``status`` key

    Returns:
        ``round(100 * completed / total)`` as an int in [0, 100], or 0 when
        there are no milestones
    """
    total = len(milestones)
    if total == 0:
        return 0

    completed = sum(
        1
        for milestone in milestones
        if milestone.get("status") == MilestoneStatus.COMPLETED.value
    )
    # Half-up: 1 of 8 completed is 13
    return (200 * completed + total) // (2 * total)
