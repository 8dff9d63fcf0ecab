"""Service layer for importing reviews from external sources."""

import asyncio
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter, ValidationError

from review_aggregator.cache.review_cache import PLACES_NAMESPACE, ReviewCache
from review_aggregator.clients.google_business import GoogleBusinessClient, is_location_name
from review_aggregator.clients.google_places import GooglePlacesClient
from review_aggregator.clients.property_api import PropertyApiClient
from review_aggregator.core.errors import (
    DuplicateReviewError,
    InvalidLocatorError,
    NormalizationError,
    PersistenceError,
    SourceUnavailableError,
)
from review_aggregator.core.locks import KeyedLock
from review_aggregator.models.raw import RawManualReview
from review_aggregator.models.reviews import (
    SYSTEM_APPROVER,
    ImportItemError,
    ImportResult,
    NormalizedReview,
    PlaceSearchQuery,
    PlaceSummary,
    Review,
    ReviewSource,
    ReviewStatus,
)
from review_aggregator.services.normalizer import item_ref, normalize
from review_aggregator.services.slugs import SlugResolver
from review_aggregator.storage.repository import ReviewRepository
from review_aggregator.telemetry.logger import get_logger

_MANUAL_BATCH = TypeAdapter(list[RawManualReview])


@dataclass
class ImportOptions:
    auto_approve: bool = False
    target_listing_id: str | None = None
    cancel_event: asyncio.Event | None = None
    approver: str = SYSTEM_APPROVER


class IngestionService:
    """Fetch, normalize, deduplicate and store reviews from one source at a time."""

    def __init__(
        self,
        repository: ReviewRepository,
        *,
        places_client: GooglePlacesClient | None = None,
        business_client: GoogleBusinessClient | None = None,
        property_client: PropertyApiClient | None = None,
        slug_resolver: SlugResolver | None = None,
        cache: ReviewCache | None = None,
    ):
        self.repository = repository
        self.places_client = places_client
        self.business_client = business_client
        self.property_client = property_client
        self.slug_resolver = slug_resolver or SlugResolver(repository)
        self.cache = cache
        self._external_id_locks = KeyedLock()
        self.logger = get_logger("ingestion_service")

    async def import_from_source(
        self,
        source: ReviewSource | str,
        locator: Any = None,
        options: ImportOptions | None = None,
    ) -> ImportResult:
        """Import every review the source returns for ``locator``.

        Args:
            source: Source name
            locator: Place id (google_places), ``accounts/../locations/..``
                (google_business), optional listing id (property_api), or a
                list of entries (manual)
            options: Approval, target listing and cancellation

        Returns:
            Counts and per-item errors. Provider errors propagate unchanged.

        Raises:
            InvalidLocatorError: unknown source, bad locator or unknown target listing
            SourceUnavailableError: no client configured for the source
        """
        options = options or ImportOptions()
        correlation_id = str(uuid.uuid4())
        start_time = time.time()

        try:
            source = ReviewSource(source)
        except ValueError as e:
            raise InvalidLocatorError(f"unknown source: {source!r}") from e

        self.logger.info(
            "Import started",
            extra={
                "correlation_id": correlation_id,
                "source": source.value,
                "locator": str(locator)[:200] if locator is not None else None,
                "auto_approve": options.auto_approve,
                "operation": "import_start",
            },
        )

        if options.target_listing_id is not None:
            if await self.repository.get_listing(options.target_listing_id) is None:
                raise InvalidLocatorError(f"unknown listing: {options.target_listing_id}")

        raw_items = await self._fetch(source, locator)

        if not raw_items:
            self.logger.info(
                "Import found no items",
                extra={
                    "correlation_id": correlation_id,
                    "source": source.value,
                    "duration_seconds": time.time() - start_time,
                    "operation": "import_no_items",
                },
            )
            return ImportResult(no_items=True)

        result = await self._process(raw_items, options, correlation_id)

        self.logger.info(
            "Import completed",
            extra={
                "correlation_id": correlation_id,
                "source": source.value,
                "fetched": len(raw_items),
                "imported": result.imported,
                "skipped": result.skipped,
                "errors_count": len(result.errors),
                "cancelled": result.cancelled,
                "duration_seconds": time.time() - start_time,
                "operation": "import_complete",
            },
        )
        return result

    async def create_manual_review(
        self, entry: RawManualReview | dict[str, Any], options: ImportOptions | None = None
    ) -> ImportResult:
        """Single manual entry through the regular import path."""
        return await self.import_from_source(ReviewSource.MANUAL, [entry], options)

    async def search_places(self, query: PlaceSearchQuery) -> list[PlaceSummary]:
        """Find Places candidates whose ``place_id`` can be imported.

        Raises:
            SourceUnavailableError: no Places client configured
        """
        client = self._require(self.places_client, ReviewSource.GOOGLE_PLACES)
        key = self.cache.key(PLACES_NAMESPACE, query) if self.cache else None
        if key is not None:
            cached = await self.cache.get_json(key)
            if cached is not None:
                return [PlaceSummary.model_validate(item) for item in cached]

        places = await client.search(query.query, location=query.location, radius=query.radius)
        summaries = [
            PlaceSummary(
                place_id=place.place_id,
                name=place.name,
                address=place.formatted_address,
                rating=place.rating,
                user_ratings_total=place.user_ratings_total,
                business_status=place.business_status,
                types=place.types,
            )
            for place in places
        ]
        if key is not None:
            self.cache.set_in_background(
                key, [summary.model_dump(mode="json") for summary in summaries]
            )
        return summaries

    async def _fetch(self, source: ReviewSource, locator: Any) -> Sequence[Any]:
        if source is ReviewSource.GOOGLE_PLACES:
            place_id = self._text_locator(locator, "place id")
            client = self._require(self.places_client, source)
            details = await client.fetch_details(place_id)
            return details.reviews

        if source is ReviewSource.GOOGLE_BUSINESS:
            location_name = self._text_locator(locator, "location name")
            if not is_location_name(location_name):
                raise InvalidLocatorError(
                    "location name must look like accounts/{accountId}/locations/{locationId}"
                )
            client = self._require(self.business_client, source)
            return await client.fetch_reviews(location_name)

        if source is ReviewSource.PROPERTY_API:
            listing_id = None if locator in (None, "") else str(locator).strip()
            client = self._require(self.property_client, source)
            return await client.fetch_reviews(listing_id)

        if not isinstance(locator, (list, tuple)) or not locator:
            raise InvalidLocatorError("manual import needs a non-empty list of entries")
        try:
            return _MANUAL_BATCH.validate_python(list(locator))
        except ValidationError as e:
            raise InvalidLocatorError(f"invalid manual entries: {e.error_count()} errors") from e

    @staticmethod
    def _text_locator(locator: Any, label: str) -> str:
        if not isinstance(locator, str) or not locator.strip():
            raise InvalidLocatorError(f"missing {label}")
        return locator.strip()

    @staticmethod
    def _require(client: Any, source: ReviewSource) -> Any:
        if client is None:
            raise SourceUnavailableError(f"source not configured: {source.value}")
        return client

    async def _process(
        self, raw_items: Sequence[Any], options: ImportOptions, correlation_id: str
    ) -> ImportResult:
        result = ImportResult()
        touched_listings: set[str | None] = set()

        for index, raw in enumerate(raw_items, start=1):
            if options.cancel_event is not None and options.cancel_event.is_set():
                result.cancelled = True
                self.logger.warning(
                    "Import cancelled between items",
                    extra={
                        "correlation_id": correlation_id,
                        "processed": index - 1,
                        "remaining": len(raw_items) - index + 1,
                        "operation": "import_cancelled",
                    },
                )
                break

            try:
                normalized = normalize(raw)
            except NormalizationError as e:
                self._record_error(
                    result,
                    index,
                    e.item_ref or item_ref(raw),
                    e.message,
                    correlation_id,
                    "import_item_normalization_failed",
                )
                continue

            try:
                outcome = await self._store(normalized, options)
            except PersistenceError as e:
                self._record_error(
                    result,
                    index,
                    normalized.external_id,
                    str(e) or type(e).__name__,
                    correlation_id,
                    "import_item_persistence_failed",
                )
                continue

            if outcome is None:
                result.skipped += 1
            else:
                result.imported += 1
                touched_listings.add(outcome.listing_id)

        if touched_listings and self.cache is not None:
            for listing_id in touched_listings:
                await self.cache.invalidate_listing(listing_id)

        return result

    async def _store(self, normalized: NormalizedReview, options: ImportOptions) -> Review | None:
        """Insert unless the external id is known; None means skipped."""
        async with self._external_id_locks.hold(normalized.external_id):
            if await self.repository.find_review_by_external_id(normalized.external_id):
                return None

            listing_id = options.target_listing_id
            if listing_id is None and normalized.listing_hint is not None:
                listing = await self.slug_resolver.resolve_listing(
                    normalized.listing_hint.external_id, normalized.listing_hint.name
                )
                listing_id = listing.id

            if options.auto_approve:
                review = Review.from_normalized(
                    normalized,
                    listing_id=listing_id,
                    status=ReviewStatus.APPROVED,
                    approved_by=options.approver,
                )
            else:
                review = Review.from_normalized(normalized, listing_id=listing_id)

            try:
                return await self.repository.insert_review(review)
            except DuplicateReviewError:
                return None

    def _record_error(
        self,
        result: ImportResult,
        index: int,
        ref: str,
        message: str,
        correlation_id: str,
        operation: str,
    ) -> None:
        result.errors.append(ImportItemError(index=index, item_ref=ref, message=message))
        self.logger.warning(
            "Import item failed",
            extra={
                "correlation_id": correlation_id,
                "index": index,
                "item_ref": ref,
                "error": message,
                "operation": operation,
            },
        )
