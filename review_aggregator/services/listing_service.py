"""Listing lookups with statistics, cached."""

import asyncio
import time
import uuid
from typing import Literal

from pydantic import BaseModel

from review_aggregator.cache.review_cache import LISTING_NAMESPACE, LISTINGS_NAMESPACE, ReviewCache
from review_aggregator.core.errors import DuplicateListingError, ListingNotFoundError
from review_aggregator.models.reviews import (
    AggregateStats,
    Listing,
    ListingPage,
    ListingStatsQuery,
    ListingWithStats,
)
from review_aggregator.services.aggregator import compute_stats
from review_aggregator.services.slugs import SlugResolver
from review_aggregator.storage.query_plan import ListingQueryPlan
from review_aggregator.storage.repository import ReviewRepository
from review_aggregator.telemetry.logger import get_logger


class ListingView(BaseModel):
    view: Literal["detail", "stats"]


class ListingService:
    def __init__(
        self,
        repository: ReviewRepository,
        cache: ReviewCache | None = None,
        slug_resolver: SlugResolver | None = None,
    ):
        self.repository = repository
        self.cache = cache
        self.slug_resolver = slug_resolver or SlugResolver(repository)
        self.logger = get_logger("listing_service")

    async def get_listing(self, listing_id: str) -> ListingWithStats:
        """Listing with stats computed from its reviews.

        Raises:
            ListingNotFoundError: no listing with this id
        """
        key = self._listing_key(listing_id, "detail")
        cached = await self._cached(key)
        if cached is not None:
            return ListingWithStats.model_validate(cached)

        start_time = time.time()
        listing, reviews = await asyncio.gather(
            self.repository.get_listing(listing_id),
            self.repository.list_reviews_for_listing(listing_id),
        )
        if listing is None:
            raise ListingNotFoundError(listing_id)

        result = ListingWithStats(**listing.model_dump(), stats=compute_stats(reviews))
        self.logger.info(
            "Listing loaded with stats",
            extra={
                "listing_id": listing_id,
                "total_reviews": result.stats.total_reviews,
                "duration_seconds": time.time() - start_time,
                "operation": "listing_get",
            },
        )
        self._store(key, result)
        return result

    async def get_listing_by_slug(self, slug: str) -> ListingWithStats:
        """Raises ``ListingNotFoundError`` when no listing has this slug."""
        listing = await self.repository.find_listing_by_slug(slug)
        if listing is None:
            raise ListingNotFoundError(slug)
        return await self.get_listing(listing.id)

    async def get_listing_by_external_id(self, external_id: str) -> ListingWithStats:
        listing = await self.repository.find_listing_by_external_id(external_id)
        if listing is None:
            raise ListingNotFoundError(external_id)
        return await self.get_listing(listing.id)

    async def get_listing_stats(self, listing_id: str) -> AggregateStats:
        key = self._listing_key(listing_id, "stats")
        cached = await self._cached(key)
        if cached is not None:
            return AggregateStats.model_validate(cached)

        listing, reviews = await asyncio.gather(
            self.repository.get_listing(listing_id),
            self.repository.list_reviews_for_listing(listing_id),
        )
        if listing is None:
            raise ListingNotFoundError(listing_id)

        stats = compute_stats(reviews)
        self._store(key, stats)
        return stats

    async def query_listings(self, query: ListingStatsQuery) -> ListingPage:
        """Filtered, sorted page of listings with push-down aggregates."""
        key = self.cache.key(LISTINGS_NAMESPACE, query) if self.cache else None
        cached = await self._cached(key)
        if cached is not None:
            return ListingPage.model_validate(cached)

        correlation_id = str(uuid.uuid4())
        start_time = time.time()
        listings, total = await self.repository.query_listings_with_aggregates(
            ListingQueryPlan.from_query(query)
        )
        page = ListingPage(listings=listings, total=total, page=query.page, limit=query.limit)

        self.logger.info(
            "Listing query completed",
            extra={
                "correlation_id": correlation_id,
                "total": total,
                "returned": len(listings),
                "page": query.page,
                "duration_seconds": time.time() - start_time,
                "operation": "listing_query",
            },
        )
        self._store(key, page)
        return page

    async def create_listing(self, external_id: str, name: str) -> Listing:
        """New listing with a unique slug.

        Raises:
            DuplicateListingError: external id already registered
        """
        if await self.repository.find_listing_by_external_id(external_id) is not None:
            raise DuplicateListingError(external_id)
        listing = await self.slug_resolver.create_listing(external_id, name)
        if self.cache is not None:
            await self.cache.invalidate_listing(None)
        return listing

    def _listing_key(self, listing_id: str, view: str) -> str | None:
        if self.cache is None:
            return None
        return self.cache.key(LISTING_NAMESPACE, ListingView(view=view), scope=listing_id)

    async def _cached(self, key: str | None):
        if key is None or self.cache is None:
            return None
        return await self.cache.get_json(key)

    def _store(self, key: str | None, model: BaseModel) -> None:
        if key is not None and self.cache is not None:
            self.cache.set_in_background(key, model.model_dump(mode="json"))
