"""FastAPI endpoints for manual reviews, moderation and review queries."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import Field, ValidationError

from review_aggregator.api.v1.imports import ImportResponse, run_import
from review_aggregator.core.errors import PersistenceError, ReviewNotFoundError
from review_aggregator.dependencies import get_ingestion_service, get_review_service
from review_aggregator.models.reviews import (
    SYSTEM_APPROVER,
    ApiModel,
    BulkStatusResult,
    Review,
    ReviewHistory,
    ReviewPage,
    ReviewQuery,
    ReviewSource,
    ReviewStatus,
    utcnow,
)
from review_aggregator.services.ingestion import ImportOptions, IngestionService
from review_aggregator.services.review_service import ReviewService

router = APIRouter(prefix="/reviews", tags=["reviews"])

MAX_BULK_IDS = 100


class ManualReviewRequest(ApiModel):
    """Request model for an operator-entered review."""

    listing_id: str = Field(..., description="Listing the review belongs to")
    guest_name: str | None = Field(None, max_length=255)
    comment: str | None = Field(None, max_length=5000)
    rating: float | None = Field(None, ge=0, le=10)
    scale: Literal[5, 10] = Field(10, description="Scale the rating was given on")
    categories: dict[str, float] = Field(default_factory=dict)
    submitted_at: datetime | None = None
    external_id: str | None = Field(None, max_length=255)
    auto_approve: bool = False


class StatusUpdateRequest(ApiModel):
    status: ReviewStatus
    approved_by: str | None = Field(None, max_length=255)


class BulkStatusRequest(StatusUpdateRequest):
    review_ids: list[str] = Field(..., min_length=1, max_length=MAX_BULK_IDS)


class BulkStatusResponse(BulkStatusResult):
    success: bool
    message: str


@router.get("", response_model=ReviewPage)
async def list_reviews(
    listing_id: str | None = Query(None, alias="listingId"),
    status: ReviewStatus | None = Query(None),
    channels: list[ReviewSource] | None = Query(None, alias="channel"),
    min_rating: float | None = Query(None, alias="minRating"),
    max_rating: float | None = Query(None, alias="maxRating"),
    submitted_from: datetime | None = Query(None, alias="from"),
    submitted_to: datetime | None = Query(None, alias="to"),
    search: str | None = Query(None),
    sort_by: Literal["submitted_at", "rating", "created_at"] = Query(
        "submitted_at", alias="sortBy"
    ),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1),
    limit: int = Query(20),
    service: ReviewService = Depends(get_review_service),
) -> ReviewPage:
    """Reviews filtered by listing, status, source, rating, date range and text."""
    try:
        query = ReviewQuery(
            listing_id=listing_id,
            status=status,
            channels=channels or [],
            min_rating=min_rating,
            max_rating=max_rating,
            submitted_from=submitted_from,
            submitted_to=submitted_to,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=422, detail=e.errors(include_url=False, include_context=False)
        ) from e

    try:
        return await service.query_reviews(query)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.post("/manual", response_model=ImportResponse)
async def create_manual_review(
    request: ManualReviewRequest,
    service: IngestionService = Depends(get_ingestion_service),
) -> ImportResponse:
    """Store one manual review; a repeated external id is reported as skipped."""
    if request.rating is not None and request.rating > request.scale:
        raise HTTPException(status_code=422, detail="rating exceeds its scale")

    entry = {
        "external_id": request.external_id,
        "listing_ref": request.listing_id,
        "guest_name": request.guest_name,
        "comment": request.comment,
        "rating": request.rating,
        "scale": request.scale,
        "categories": request.categories,
        "submitted_at": (request.submitted_at or utcnow()).isoformat(),
    }
    options = ImportOptions(auto_approve=request.auto_approve, target_listing_id=request.listing_id)
    return await run_import(service, ReviewSource.MANUAL.value, [entry], options)


@router.post("/bulk-status", response_model=BulkStatusResponse)
async def bulk_update_status(
    request: BulkStatusRequest,
    response: Response,
    service: ReviewService = Depends(get_review_service),
) -> BulkStatusResponse:
    """Moderate up to 100 reviews at once; 207 when some of them failed."""
    result = await service.bulk_update_status(
        request.review_ids, request.status, request.approved_by or SYSTEM_APPROVER
    )
    success = result.failed == 0
    if not success:
        response.status_code = 207
        message = f"Partially completed: {result.updated} updated, {result.failed} failed"
    else:
        message = f"Updated {result.updated} reviews to {result.status.value}"
    return BulkStatusResponse(**result.model_dump(), success=success, message=message)


@router.get("/{review_id}", response_model=Review)
async def get_review(
    review_id: str,
    service: ReviewService = Depends(get_review_service),
) -> Review:
    try:
        return await service.get_review(review_id)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Review not found: {review_id}") from e


@router.get("/{review_id}/history", response_model=ReviewHistory)
async def get_review_history(
    review_id: str,
    service: ReviewService = Depends(get_review_service),
) -> ReviewHistory:
    try:
        return await service.get_history(review_id)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Review not found: {review_id}") from e


@router.patch("/{review_id}/status", response_model=Review)
async def update_review_status(
    review_id: str,
    request: StatusUpdateRequest,
    service: ReviewService = Depends(get_review_service),
) -> Review:
    try:
        return await service.update_status(
            review_id, request.status, request.approved_by or SYSTEM_APPROVER
        )
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Review not found: {review_id}") from e
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
