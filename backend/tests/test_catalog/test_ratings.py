"""
Tests for review rating aggregation.
"""

import pytest

from gigmarket.services.catalog.ratings import RatingSummary, calculate_rating


def reviews(*ratings: int) -> list[dict]:
    return [{"rating": rating, "comment": None} for rating in ratings]


class TestCalculateRating:
    """Test recomputation of the average rating and review count."""

    def test_no_reviews(self) -> None:
        assert calculate_rating([]) == RatingSummary(average=0.0, count=0)

    def test_mean_of_three(self) -> None:
        assert calculate_rating(reviews(5, 4, 3)) == RatingSummary(average=4.0, count=3)

    def test_single_review(self) -> None:
        summary = calculate_rating(reviews(2))
        assert summary.average == 2.0
        assert summary.count == 1

    @pytest.mark.parametrize(
        "ratings,expected",
        [
            ((5, 4), 4.5),
            ((5, 5, 4), 4.7),
            ((4, 4, 5), 4.3),
            ((1, 2, 2, 2), 1.8),
            ((5, 4, 4, 4), 4.3),
        ],
    )
    def test_rounds_to_one_decimal_half_up(self, ratings: tuple, expected: float) -> None:
        assert calculate_rating(reviews(*ratings)).average == expected

    def test_average_within_rating_scale(self) -> None:
        summary = calculate_rating(reviews(1, 5, 3, 2, 4))
        assert 1.0 <= summary.average <= 5.0
