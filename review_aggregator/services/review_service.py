"""Review moderation, approval history and review queries."""

import time
import uuid
from collections.abc import Sequence

from review_aggregator.cache.review_cache import REVIEW_PAGES_NAMESPACE, ReviewCache
from review_aggregator.core.errors import PersistenceError, ReviewNotFoundError
from review_aggregator.models.reviews import (
    BulkItemError,
    BulkStatusResult,
    Review,
    ReviewHistory,
    ReviewPage,
    ReviewQuery,
    ReviewStatus,
)
from review_aggregator.storage.query_plan import ReviewQueryPlan
from review_aggregator.storage.repository import ReviewRepository
from review_aggregator.telemetry.logger import get_logger


class ReviewService:
    def __init__(self, repository: ReviewRepository, cache: ReviewCache | None = None):
        self.repository = repository
        self.cache = cache
        self.logger = get_logger("review_service")

    async def get_review(self, review_id: str) -> Review:
        review = await self.repository.get_review(review_id)
        if review is None:
            raise ReviewNotFoundError(review_id)
        return review

    async def update_status(
        self, review_id: str, status: ReviewStatus, approver: str | None = None
    ) -> Review:
        """Approve, reject or reset a review and drop affected cache entries.

        The transition is written to the review's approval history together
        with the status change.

        Args:
            review_id: Review to update
            status: New moderation status
            approver: Who made the decision; ignored when resetting to pending

        Returns:
            The updated review

        Raises:
            ReviewNotFoundError: unknown review id
        """
        review = await self._apply_status(review_id, status, approver)
        if self.cache is not None:
            await self.cache.invalidate_listing(review.listing_id)
        return review

    async def bulk_update_status(
        self, review_ids: Sequence[str], status: ReviewStatus, approver: str | None = None
    ) -> BulkStatusResult:
        """Apply one status to many reviews; failures are reported per id.

        Repeated ids are updated once. Unknown ids and storage failures are
        collected in ``errors`` and the remaining ids are still processed.
        """
        correlation_id = str(uuid.uuid4())
        start_time = time.time()
        result = BulkStatusResult(status=status)
        touched_listings: set[str | None] = set()

        for review_id in dict.fromkeys(review_ids):
            try:
                review = await self._apply_status(review_id, status, approver)
            except ReviewNotFoundError:
                message = "review not found"
            except PersistenceError as e:
                message = str(e) or type(e).__name__
            else:
                result.updated += 1
                touched_listings.add(review.listing_id)
                continue
            result.failed += 1
            result.errors.append(BulkItemError(review_id=review_id, message=message))

        if self.cache is not None:
            for listing_id in touched_listings:
                await self.cache.invalidate_listing(listing_id)

        self.logger.info(
            "Bulk status update completed",
            extra={
                "correlation_id": correlation_id,
                "requested": len(review_ids),
                "updated": result.updated,
                "failed": result.failed,
                "status": status.value,
                "duration_seconds": time.time() - start_time,
                "operation": "review_bulk_status_update",
            },
        )
        return result

    async def get_history(self, review_id: str) -> ReviewHistory:
        """Current status and every recorded transition, newest first.

        Raises:
            ReviewNotFoundError: unknown review id
        """
        review = await self.get_review(review_id)
        entries = await self.repository.list_review_history(review_id)
        return ReviewHistory(review_id=review_id, current_status=review.status, entries=entries)

    async def query_reviews(self, query: ReviewQuery) -> ReviewPage:
        """Filtered, sorted page of reviews."""
        key = self.cache.key(REVIEW_PAGES_NAMESPACE, query) if self.cache else None
        if key is not None:
            cached = await self.cache.get_json(key)
            if cached is not None:
                return ReviewPage.model_validate(cached)

        start_time = time.time()
        reviews, total = await self.repository.query_reviews(ReviewQueryPlan.from_query(query))
        page = ReviewPage(reviews=reviews, total=total, page=query.page, limit=query.limit)

        self.logger.info(
            "Review query completed",
            extra={
                "total": total,
                "returned": len(reviews),
                "page": query.page,
                "duration_seconds": time.time() - start_time,
                "operation": "review_query",
            },
        )
        if key is not None:
            self.cache.set_in_background(key, page.model_dump(mode="json"))
        return page

    async def _apply_status(
        self, review_id: str, status: ReviewStatus, approver: str | None
    ) -> Review:
        review = await self.repository.update_review_status(review_id, status, approver)
        self.logger.info(
            "Review status updated",
            extra={
                "review_id": review_id,
                "listing_id": review.listing_id,
                "status": review.status.value,
                "approved_by": review.approved_by,
                "operation": "review_status_update",
            },
        )
        return review
