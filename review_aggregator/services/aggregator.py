"""Per-listing review statistics.

Both the in-memory path (``compute_stats``) and the SQL push-down path feed
grouped ``(rating, source, count)`` rows into ``stats_from_groups``, so the
two modes produce identical numbers. Ratings are summed in integer tenths, so
the mean is an exact ``Fraction``; it is rounded half-up to two places only
for display. Rating filters and ordering compare the exact mean.
"""

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import NamedTuple

from review_aggregator.models.reviews import AggregateStats, Review, ReviewSource, ReviewStatus

AVERAGE_QUANTUM = Decimal("0.01")


class ReviewGroup(NamedTuple):
    rating: float | None
    source: str
    count: int


def rating_bucket(rating: float | None) -> int | None:
    """``floor(rating)`` when it falls in 1..10, else None."""
    if rating is None:
        return None
    bucket = math.floor(rating)
    return bucket if 1 <= bucket <= 10 else None


def rating_tenths(rating: float) -> int:
    """Stored ratings carry one decimal; ``8.5`` -> ``85``."""
    return int(Decimal(str(rating)).scaleb(1).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def mean_rating(groups: Iterable[ReviewGroup]) -> Fraction | None:
    """Exact mean over rated reviews; None when nothing is rated."""
    tenths = 0
    count = 0
    for group in groups:
        if group.rating is None:
            continue
        tenths += rating_tenths(group.rating) * group.count
        count += group.count
    if count == 0:
        return None
    return Fraction(tenths, 10 * count)


def bound_fraction(bound: float) -> Fraction:
    """A rating bound as given by the caller, ``6.2`` -> ``31/5``."""
    return Fraction(Decimal(str(bound)))


def rounded_average(mean: Fraction | None) -> float:
    if mean is None:
        return 0.0
    exact = Decimal(mean.numerator) / Decimal(mean.denominator)
    return float(exact.quantize(AVERAGE_QUANTUM, rounding=ROUND_HALF_UP))


def build_rating_breakdown(groups: Iterable[ReviewGroup]) -> dict[int, int]:
    breakdown: Counter[int] = Counter()
    for group in groups:
        bucket = rating_bucket(group.rating)
        if bucket is not None:
            breakdown[bucket] += group.count
    return dict(sorted(breakdown.items()))


def build_channel_breakdown(groups: Iterable[ReviewGroup]) -> dict[str, int]:
    breakdown: Counter[str] = Counter()
    for group in groups:
        breakdown[group.source] += group.count
    return dict(sorted(breakdown.items()))


def group_reviews(reviews: Iterable[Review]) -> list[ReviewGroup]:
    counts = Counter(
        (review.rating, ReviewSource(review.source).value) for review in reviews
    )
    return [ReviewGroup(rating, source, count) for (rating, source), count in counts.items()]


def stats_from_groups(
    groups: Sequence[ReviewGroup],
    *,
    approved_reviews: int,
    last_review_date: datetime | None,
) -> AggregateStats:
    return AggregateStats(
        total_reviews=sum(group.count for group in groups),
        approved_reviews=approved_reviews,
        average_rating=rounded_average(mean_rating(groups)),
        rating_breakdown=build_rating_breakdown(groups),
        channel_breakdown=build_channel_breakdown(groups),
        last_review_date=last_review_date,
    )


def compute_stats(reviews: Sequence[Review]) -> AggregateStats:
    """Aggregate an already-fetched set of reviews of one listing.

    Args:
        reviews: Reviews of a single listing, possibly empty

    Returns:
        Stats; zero-review input yields zero/empty values, never None
    """
    return stats_from_groups(
        group_reviews(reviews),
        approved_reviews=sum(1 for review in reviews if review.status == ReviewStatus.APPROVED),
        last_review_date=max((review.submitted_at for review in reviews), default=None),
    )


def listing_sort_key(
    name: str,
    mean: Fraction | None,
    total_reviews: int,
    *,
    descending: bool = True,
) -> tuple:
    """Unrated listings last in both directions, then count DESC, then name ASC."""
    if mean is None:
        return (1, 0, -total_reviews, name)
    return (0, -mean if descending else mean, -total_reviews, name)
