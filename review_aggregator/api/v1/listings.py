"""FastAPI endpoints for listings and their review statistics."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field, ValidationError

from review_aggregator.core.errors import (
    DuplicateListingError,
    ListingNotFoundError,
    PersistenceError,
    SlugConflictError,
)
from review_aggregator.dependencies import get_listing_service
from review_aggregator.models.reviews import (
    AggregateStats,
    ApiModel,
    Listing,
    ListingPage,
    ListingStatsQuery,
    ListingWithStats,
    ReviewSource,
)
from review_aggregator.services.listing_service import ListingService

router = APIRouter(prefix="/listings", tags=["listings"])


class CreateListingRequest(ApiModel):
    external_id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)


@router.get("", response_model=ListingPage)
async def list_listings(
    min_reviews: int = Query(0, alias="minReviews"),
    min_rating: float | None = Query(None, alias="minRating"),
    max_rating: float | None = Query(None, alias="maxRating"),
    channels: list[ReviewSource] | None = Query(None, alias="channel"),
    search: str | None = Query(None),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1),
    limit: int = Query(20),
    service: ListingService = Depends(get_listing_service),
) -> ListingPage:
    """Listings with aggregate stats, filtered and sorted by average rating."""
    try:
        query = ListingStatsQuery(
            min_reviews=min_reviews,
            min_rating=min_rating,
            max_rating=max_rating,
            channels=channels or [],
            search=search,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=422, detail=e.errors(include_url=False, include_context=False)
        ) from e

    try:
        return await service.query_listings(query)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.post("", response_model=Listing, status_code=201)
async def create_listing(
    request: CreateListingRequest,
    service: ListingService = Depends(get_listing_service),
) -> Listing:
    try:
        return await service.create_listing(request.external_id, request.name)
    except (DuplicateListingError, SlugConflictError) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/slug/{slug}", response_model=ListingWithStats)
async def get_listing_by_slug(
    slug: str,
    service: ListingService = Depends(get_listing_service),
) -> ListingWithStats:
    try:
        return await service.get_listing_by_slug(slug)
    except ListingNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Listing not found: {slug}") from e


@router.get("/external/{external_id}", response_model=ListingWithStats)
async def get_listing_by_external_id(
    external_id: str,
    service: ListingService = Depends(get_listing_service),
) -> ListingWithStats:
    """Lookup by the provider-side listing id."""
    try:
        return await service.get_listing_by_external_id(external_id)
    except ListingNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Listing not found: {external_id}") from e


@router.get("/{listing_id}", response_model=ListingWithStats)
async def get_listing(
    listing_id: str,
    service: ListingService = Depends(get_listing_service),
) -> ListingWithStats:
    try:
        return await service.get_listing(listing_id)
    except ListingNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Listing not found: {listing_id}") from e


@router.get("/{listing_id}/stats", response_model=AggregateStats)
async def get_listing_stats(
    listing_id: str,
    service: ListingService = Depends(get_listing_service),
) -> AggregateStats:
    try:
        return await service.get_listing_stats(listing_id)
    except ListingNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Listing not found: {listing_id}") from e
