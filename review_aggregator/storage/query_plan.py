"""Storage-neutral description of a filtered, sorted listing page."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from review_aggregator.models.reviews import ListingStatsQuery, ReviewQuery


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class ListingFilters:
    min_reviews: int = 0
    min_rating: float | None = None
    max_rating: float | None = None
    # Empty means every source; otherwise reviews from other sources are not counted.
    channels: tuple[str, ...] = ()
    search: str | None = None


@dataclass(frozen=True)
class ListingQueryPlan:
    filters: ListingFilters = field(default_factory=ListingFilters)
    direction: SortDirection = SortDirection.DESC
    offset: int = 0
    limit: int = 20

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESC

    @classmethod
    def from_query(cls, query: ListingStatsQuery) -> "ListingQueryPlan":
        return cls(
            filters=ListingFilters(
                min_reviews=query.min_reviews,
                min_rating=query.min_rating,
                max_rating=query.max_rating,
                channels=tuple(source.value for source in query.channels),
                search=query.search,
            ),
            direction=SortDirection(query.sort_order),
            offset=query.offset,
            limit=query.limit,
        )


@dataclass(frozen=True)
class ReviewFilters:
    listing_id: str | None = None
    status: str | None = None
    channels: tuple[str, ...] = ()
    min_rating: float | None = None
    max_rating: float | None = None
    submitted_from: datetime | None = None
    submitted_to: datetime | None = None
    # Case-insensitive substring of guest name or comment.
    search: str | None = None


@dataclass(frozen=True)
class ReviewQueryPlan:
    """Reviews ordered by ``sort_by`` (unrated last when sorting by rating), then id."""

    filters: ReviewFilters = field(default_factory=ReviewFilters)
    sort_by: str = "submitted_at"
    direction: SortDirection = SortDirection.DESC
    offset: int = 0
    limit: int = 20

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESC

    @classmethod
    def from_query(cls, query: ReviewQuery) -> "ReviewQueryPlan":
        return cls(
            filters=ReviewFilters(
                listing_id=query.listing_id,
                status=query.status.value if query.status is not None else None,
                channels=tuple(source.value for source in query.channels),
                min_rating=query.min_rating,
                max_rating=query.max_rating,
                submitted_from=query.submitted_from,
                submitted_to=query.submitted_to,
                search=query.search,
            ),
            sort_by=query.sort_by,
            direction=SortDirection(query.sort_order),
            offset=query.offset,
            limit=query.limit,
        )
