"""Review rating aggregation for services."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Sequence


@dataclass(frozen=True)
class RatingSummary:
    """Average rating and review count of an entity."""

    average: float
    count: int


def calculate_rating(reviews: Sequence[Mapping[str, Any]]) -> RatingSummary:
    """
    Recompute average rating and review count.

    Args:
        reviews: Review records, each with a numeric ``rating``

    Returns:
        RatingSummary with the mean rounded half-up to one decimal place, or
        (0, 0) for no reviews
    """
    if not reviews:
        return RatingSummary(average=0.0, count=0)

    total = sum(Decimal(str(review["rating"])) for review in reviews)
    mean = (total / len(reviews)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return RatingSummary(average=float(mean), count=len(reviews))
