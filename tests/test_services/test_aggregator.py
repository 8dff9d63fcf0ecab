"""Tests for in-memory aggregation and listing order."""

from fractions import Fraction

from factories import BASE_TIME, make_review

from review_aggregator.models.reviews import ReviewSource, ReviewStatus
from review_aggregator.services.aggregator import (
    ReviewGroup,
    bound_fraction,
    compute_stats,
    listing_sort_key,
    mean_rating,
    rating_bucket,
    rating_tenths,
    rounded_average,
)


def test_zero_review_stats():
    stats = compute_stats([])

    assert stats.total_reviews == 0
    assert stats.approved_reviews == 0
    assert stats.average_rating == 0
    assert stats.rating_breakdown == {}
    assert stats.channel_breakdown == {}
    assert stats.last_review_date is None


def test_compute_stats():
    reviews = [
        make_review("l1", 9.5, external_id="a", status=ReviewStatus.APPROVED, days_ago=3),
        make_review("l1", 9.0, external_id="b", source=ReviewSource.GOOGLE_PLACES),
        make_review("l1", 6.0, external_id="c", status=ReviewStatus.APPROVED, days_ago=1),
        make_review("l1", None, external_id="d", source=ReviewSource.MANUAL, days_ago=10),
    ]

    stats = compute_stats(reviews)

    assert stats.total_reviews == 4
    assert stats.approved_reviews == 2
    # (9.5 + 9.0 + 6.0) / 3 = 8.1666...
    assert stats.average_rating == 8.17
    assert stats.rating_breakdown == {6: 1, 9: 2}
    assert stats.channel_breakdown == {"google_places": 1, "manual": 1, "property_api": 2}
    assert stats.last_review_date == BASE_TIME


def test_unrated_reviews_only():
    stats = compute_stats([make_review("l1", None, external_id="a")])

    assert stats.total_reviews == 1
    assert stats.average_rating == 0
    assert stats.rating_breakdown == {}


def test_average_rounds_half_up():
    ratings = [8.0, 8.0, 8.0, 8.0, 8.0, 8.0, 8.5, 8.5]
    reviews = [make_review("l1", r, external_id=f"r{i}") for i, r in enumerate(ratings)]
    # Exact mean 8.125
    assert compute_stats(reviews).average_rating == 8.13


def test_rating_bucket():
    assert rating_bucket(None) is None
    assert rating_bucket(0.5) is None
    assert rating_bucket(1.0) == 1
    assert rating_bucket(7.9) == 7
    assert rating_bucket(10.0) == 10


def test_mean_is_exact():
    groups = [
        ReviewGroup(0.1, "manual", 1),
        ReviewGroup(0.2, "manual", 1),
        ReviewGroup(None, "manual", 4),
    ]
    assert mean_rating(groups) == Fraction(3, 20)
    assert mean_rating([ReviewGroup(None, "manual", 2)]) is None


def test_sort_order_desc():
    rows = [
        ("B", None, 0),
        ("A", Fraction(9, 2), 3),
        ("C", Fraction(9, 2), 10),
    ]
    ordered = sorted(rows, key=lambda r: listing_sort_key(*r, descending=True))
    assert [r[0] for r in ordered] == ["C", "A", "B"]


def test_sort_order_asc_keeps_unrated_last():
    rows = [
        ("B", None, 0),
        ("D", Fraction(3), 1),
        ("A", Fraction(9, 2), 3),
        ("C", Fraction(9, 2), 10),
    ]
    ordered = sorted(rows, key=lambda r: listing_sort_key(*r, descending=False))
    assert [r[0] for r in ordered] == ["D", "C", "A", "B"]


def test_sort_ties_broken_by_name():
    rows = [("Zed", Fraction(5), 2), ("Alpha", Fraction(5), 2)]
    ordered = sorted(rows, key=lambda r: listing_sort_key(*r))
    assert [r[0] for r in ordered] == ["Alpha", "Zed"]


def test_rating_tenths():
    assert rating_tenths(6.1) == 61
    assert rating_tenths(10.0) == 100
    assert rating_tenths(0.05) == 1


def test_mean_at_bound_is_exact():
    groups = [ReviewGroup(6.1, "manual", 1), ReviewGroup(6.3, "manual", 1)]

    assert mean_rating(groups) == bound_fraction(6.2)
    assert rounded_average(mean_rating(groups)) == 6.2
    assert rounded_average(Fraction(1249, 200)) == 6.25
    assert rounded_average(None) == 0.0
