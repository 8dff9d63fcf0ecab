"""Dict-backed repository used by tests and as the default without a database."""

from review_aggregator.core.errors import (
    DuplicateListingError,
    DuplicateReviewError,
    ReviewNotFoundError,
    SlugConflictError,
)
from review_aggregator.models.reviews import (
    Listing,
    ListingWithStats,
    Review,
    ReviewAuditEntry,
    ReviewStatus,
)
from review_aggregator.services.aggregator import (
    bound_fraction,
    group_reviews,
    listing_sort_key,
    mean_rating,
    stats_from_groups,
)
from review_aggregator.storage.query_plan import ListingQueryPlan, ReviewFilters, ReviewQueryPlan
from review_aggregator.storage.repository import audit_entry, status_change


class InMemoryReviewRepository:
    def __init__(self) -> None:
        self.reviews: dict[str, Review] = {}
        self.listings: dict[str, Listing] = {}
        self.audit_log: list[ReviewAuditEntry] = []

    async def find_review_by_external_id(self, external_id: str) -> Review | None:
        for review in self.reviews.values():
            if review.external_id == external_id:
                return review.model_copy(deep=True)
        return None

    async def insert_review(self, review: Review) -> Review:
        if any(stored.external_id == review.external_id for stored in self.reviews.values()):
            raise DuplicateReviewError(review.external_id)
        self.reviews[review.id] = review.model_copy(deep=True)
        return review

    async def get_review(self, review_id: str) -> Review | None:
        review = self.reviews.get(review_id)
        return review.model_copy(deep=True) if review else None

    async def list_reviews_for_listing(self, listing_id: str) -> list[Review]:
        reviews = [r for r in self.reviews.values() if r.listing_id == listing_id]
        reviews.sort(key=lambda r: r.submitted_at, reverse=True)
        return [r.model_copy(deep=True) for r in reviews]

    async def update_review_status(
        self, review_id: str, status: ReviewStatus, approver: str | None
    ) -> Review:
        review = self.reviews.get(review_id)
        if review is None:
            raise ReviewNotFoundError(review_id)
        updated = review.model_copy(update=status_change(status, approver))
        self.reviews[review_id] = updated
        self.audit_log.append(audit_entry(review_id, review.status, status, approver))
        return updated.model_copy(deep=True)

    async def list_review_history(self, review_id: str) -> list[ReviewAuditEntry]:
        return [entry for entry in reversed(self.audit_log) if entry.review_id == review_id]

    async def query_reviews(self, plan: ReviewQueryPlan) -> tuple[list[Review], int]:
        reviews = [r for r in self.reviews.values() if _review_matches(r, plan.filters)]
        reviews.sort(key=lambda r: r.id)
        if plan.sort_by == "rating":
            rated = [r for r in reviews if r.rating is not None]
            rated.sort(key=lambda r: r.rating, reverse=plan.descending)
            reviews = rated + [r for r in reviews if r.rating is None]
        else:
            reviews.sort(key=lambda r: getattr(r, plan.sort_by), reverse=plan.descending)
        page = reviews[plan.offset : plan.offset + plan.limit]
        return [r.model_copy(deep=True) for r in page], len(reviews)

    async def get_listing(self, listing_id: str) -> Listing | None:
        return self.listings.get(listing_id)

    async def find_listing_by_slug(self, slug: str) -> Listing | None:
        return next((item for item in self.listings.values() if item.slug == slug), None)

    async def find_listing_by_external_id(self, external_id: str) -> Listing | None:
        listings = self.listings.values()
        return next((item for item in listings if item.external_id == external_id), None)

    async def insert_listing(self, listing: Listing) -> Listing:
        if await self.find_listing_by_slug(listing.slug) is not None:
            raise SlugConflictError(listing.slug)
        if await self.find_listing_by_external_id(listing.external_id) is not None:
            raise DuplicateListingError(listing.external_id)
        self.listings[listing.id] = listing
        return listing

    async def query_listings_with_aggregates(
        self, plan: ListingQueryPlan
    ) -> tuple[list[ListingWithStats], int]:
        filters = plan.filters
        rows = []
        for listing in self.listings.values():
            if filters.search and not _matches(listing, filters.search):
                continue
            reviews = [
                r
                for r in self.reviews.values()
                if r.listing_id == listing.id
                and (not filters.channels or r.source.value in filters.channels)
            ]
            groups = group_reviews(reviews)
            mean = mean_rating(groups)

            if len(reviews) < filters.min_reviews:
                continue
            # An unrated listing fails any rating bound, as NULL does in SQL.
            if filters.min_rating is not None and (
                mean is None or mean < bound_fraction(filters.min_rating)
            ):
                continue
            if filters.max_rating is not None and (
                mean is None or mean > bound_fraction(filters.max_rating)
            ):
                continue

            stats = stats_from_groups(
                groups,
                approved_reviews=sum(1 for r in reviews if r.status == ReviewStatus.APPROVED),
                last_review_date=max((r.submitted_at for r in reviews), default=None),
            )
            key = listing_sort_key(listing.name, mean, len(reviews), descending=plan.descending)
            rows.append((key, ListingWithStats(**listing.model_dump(), stats=stats)))

        rows.sort(key=lambda row: row[0])
        page = [row[1] for row in rows[plan.offset : plan.offset + plan.limit]]
        return page, len(rows)


def _matches(listing: Listing, search: str) -> bool:
    needle = search.lower()
    values = (listing.name, listing.slug, listing.external_id)
    return any(needle in value.lower() for value in values)


def _review_matches(review: Review, filters: ReviewFilters) -> bool:
    if filters.listing_id is not None and review.listing_id != filters.listing_id:
        return False
    if filters.status is not None and review.status.value != filters.status:
        return False
    if filters.channels and review.source.value not in filters.channels:
        return False
    if filters.min_rating is not None and (
        review.rating is None or review.rating < filters.min_rating
    ):
        return False
    if filters.max_rating is not None and (
        review.rating is None or review.rating > filters.max_rating
    ):
        return False
    if filters.submitted_from is not None and review.submitted_at < filters.submitted_from:
        return False
    if filters.submitted_to is not None and review.submitted_at > filters.submitted_to:
        return False
    if filters.search:
        needle = filters.search.lower()
        return needle in review.guest_name.lower() or needle in review.comment.lower()
    return True
