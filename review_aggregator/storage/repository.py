"""Persistence interface consumed by the services."""

from typing import Protocol

from review_aggregator.models.reviews import (
    AuditAction,
    Listing,
    ListingWithStats,
    Review,
    ReviewAuditEntry,
    ReviewStatus,
    utcnow,
)
from review_aggregator.storage.query_plan import ListingQueryPlan, ReviewQueryPlan


class ReviewRepository(Protocol):
    """Async listing/review store.

    ``insert_review`` raises ``DuplicateReviewError`` on an external id that
    already exists, ``insert_listing`` raises ``SlugConflictError`` on a taken
    slug. ``update_review_status`` records a ``ReviewAuditEntry`` in the same
    write. Other failures raise ``PersistenceError``.
    """

    async def find_review_by_external_id(self, external_id: str) -> Review | None: ...

    async def insert_review(self, review: Review) -> Review: ...

    async def get_review(self, review_id: str) -> Review | None: ...

    async def list_reviews_for_listing(self, listing_id: str) -> list[Review]: ...

    async def update_review_status(
        self, review_id: str, status: ReviewStatus, approver: str | None
    ) -> Review: ...

    async def list_review_history(self, review_id: str) -> list[ReviewAuditEntry]: ...

    async def query_reviews(self, plan: ReviewQueryPlan) -> tuple[list[Review], int]: ...

    async def get_listing(self, listing_id: str) -> Listing | None: ...

    async def find_listing_by_slug(self, slug: str) -> Listing | None: ...

    async def find_listing_by_external_id(self, external_id: str) -> Listing | None: ...

    async def insert_listing(self, listing: Listing) -> Listing: ...

    async def query_listings_with_aggregates(
        self, plan: ListingQueryPlan
    ) -> tuple[list[ListingWithStats], int]: ...


def status_change(status: ReviewStatus, approver: str | None) -> dict:
    """Field updates for a moderation decision."""
    now = utcnow()
    if status is ReviewStatus.PENDING:
        return {"status": status, "approved_by": None, "approved_at": None, "updated_at": now}
    return {"status": status, "approved_by": approver, "approved_at": now, "updated_at": now}


def audit_entry(
    review_id: str, previous: ReviewStatus, status: ReviewStatus, actor: str | None
) -> ReviewAuditEntry:
    return ReviewAuditEntry(
        review_id=review_id,
        action=AuditAction.for_status(status),
        actor=actor,
        previous_status=previous,
        new_status=status,
    )
