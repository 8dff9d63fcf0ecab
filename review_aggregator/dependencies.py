"""Service wiring for the HTTP layer."""

from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Request

from review_aggregator.cache.review_cache import (
    CacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    ReviewCache,
)
from review_aggregator.clients.auth import ClientCredentialsTokenProvider, RefreshTokenProvider
from review_aggregator.clients.google_business import GoogleBusinessClient
from review_aggregator.clients.google_places import GooglePlacesClient
from review_aggregator.clients.property_api import PropertyApiClient
from review_aggregator.core.config import Settings
from review_aggregator.services.ingestion import IngestionService
from review_aggregator.services.listing_service import ListingService
from review_aggregator.services.review_service import ReviewService
from review_aggregator.services.slugs import SlugResolver
from review_aggregator.storage.repository import ReviewRepository
from review_aggregator.storage.sql import SqlReviewRepository
from review_aggregator.telemetry.logger import get_logger

logger = get_logger("dependencies")


@dataclass
class ServiceContainer:
    repository: ReviewRepository
    cache: ReviewCache
    ingestion: IngestionService
    listings: ListingService
    reviews: ReviewService
    closeables: list[Any] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        repository: ReviewRepository,
        cache: ReviewCache,
        *,
        places_client: GooglePlacesClient | None = None,
        business_client: GoogleBusinessClient | None = None,
        property_client: PropertyApiClient | None = None,
        closeables: list[Any] | None = None,
    ) -> "ServiceContainer":
        slug_resolver = SlugResolver(repository)
        return cls(
            repository=repository,
            cache=cache,
            ingestion=IngestionService(
                repository,
                places_client=places_client,
                business_client=business_client,
                property_client=property_client,
                slug_resolver=slug_resolver,
                cache=cache,
            ),
            listings=ListingService(repository, cache, slug_resolver),
            reviews=ReviewService(repository, cache),
            closeables=closeables or [],
        )

    async def aclose(self) -> None:
        await self.cache.flush()
        for resource in self.closeables:
            await resource.aclose()


def build_container(settings: Settings) -> ServiceContainer:
    """Repository, cache and whichever source clients have credentials."""
    repository = SqlReviewRepository(settings.database_url)
    repository.create_schema()

    store: CacheStore
    if settings.cache_backend == "redis":
        store = RedisCacheStore.from_url(settings.redis_url)
    else:
        store = MemoryCacheStore()
    cache = ReviewCache(
        store,
        ttl_seconds=settings.cache_ttl_seconds,
        prefix=settings.cache_prefix,
        enabled=settings.cache_enabled,
    )

    client_options = {
        "timeout_seconds": settings.provider_timeout_seconds,
        "min_delay_seconds": settings.provider_min_delay_seconds,
        "user_agent": settings.user_agent,
    }
    closeables: list[Any] = [store] if isinstance(store, RedisCacheStore) else []

    places_client = None
    if settings.google_places_api_key:
        places_client = GooglePlacesClient(
            settings.google_places_api_key,
            max_reviews=settings.google_places_max_reviews,
            **client_options,
        )
        closeables.append(places_client)

    business_client = None
    if (
        settings.google_business_client_id
        and settings.google_business_client_secret
        and settings.google_business_refresh_token
    ):
        token_provider = RefreshTokenProvider(
            refresh_token=settings.google_business_refresh_token,
            client_id=settings.google_business_client_id,
            client_secret=settings.google_business_client_secret,
            timeout_seconds=settings.provider_timeout_seconds,
        )
        business_client = GoogleBusinessClient(
            token_provider, max_pages=settings.google_business_max_pages, **client_options
        )
        closeables.extend([business_client, token_provider])

    property_client = None
    if settings.property_api_account_id and settings.property_api_key:
        base_url = settings.property_api_base_url.rstrip("/")
        token_provider = ClientCredentialsTokenProvider(
            token_url=f"{base_url}/accessTokens",
            client_id=settings.property_api_account_id,
            client_secret=settings.property_api_key,
            scope=settings.property_api_scope,
            timeout_seconds=settings.provider_timeout_seconds,
        )
        property_client = PropertyApiClient(
            token_provider,
            base_url=base_url,
            page_size=settings.property_api_page_size,
            **client_options,
        )
        closeables.extend([property_client, token_provider])

    logger.info(
        "Services configured",
        extra={
            "cache_backend": type(store).__name__,
            "google_places": places_client is not None,
            "google_business": business_client is not None,
            "property_api": property_client is not None,
            "operation": "container_build",
        },
    )
    return ServiceContainer.create(
        repository,
        cache,
        places_client=places_client,
        business_client=business_client,
        property_client=property_client,
        closeables=closeables,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_ingestion_service(
    container: ServiceContainer = Depends(get_container),
) -> IngestionService:
    return container.ingestion


def get_listing_service(container: ServiceContainer = Depends(get_container)) -> ListingService:
    return container.listings


def get_review_service(container: ServiceContainer = Depends(get_container)) -> ReviewService:
    return container.reviews
