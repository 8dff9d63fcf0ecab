"""FastAPI endpoints for importing reviews from external sources."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field, ValidationError

from review_aggregator.clients.errors import ProviderError, ProviderErrorKind
from review_aggregator.core.errors import (
    InvalidLocatorError,
    PersistenceError,
    SourceUnavailableError,
)
from review_aggregator.dependencies import get_ingestion_service
from review_aggregator.models.reviews import ApiModel, ImportResult, PlaceSearchQuery, PlaceSummary
from review_aggregator.services.ingestion import ImportOptions, IngestionService

router = APIRouter(prefix="/imports", tags=["imports"])

PROVIDER_ERROR_STATUS = {
    ProviderErrorKind.ACCESS_DENIED: 403,
    ProviderErrorKind.QUOTA_EXCEEDED: 429,
    ProviderErrorKind.INVALID_REQUEST: 400,
    ProviderErrorKind.NOT_FOUND: 404,
    ProviderErrorKind.UNAUTHORIZED: 502,
    ProviderErrorKind.UNREACHABLE: 504,
    ProviderErrorKind.UNKNOWN: 502,
}


class ImportRequest(ApiModel):
    """Request model for a source import."""

    locator: str | list[dict[str, Any]] | None = Field(
        None, description="Place id, business location name, property listing id or manual entries"
    )
    auto_approve: bool = Field(False, description="Store new reviews as approved")
    listing_id: str | None = Field(None, description="Attach every imported review to this listing")


class ImportResponse(ImportResult):
    success: bool = True
    message: str


class PlaceSearchResponse(ApiModel):
    places: list[PlaceSummary]
    count: int


def import_message(result: ImportResult) -> str:
    if result.no_items:
        return "No reviews found for this source"
    message = f"Imported {result.imported} reviews, skipped {result.skipped}"
    if result.errors:
        message += f", {len(result.errors)} failed"
    if result.cancelled:
        message += " (cancelled)"
    return message


def provider_http_error(e: ProviderError) -> HTTPException:
    return HTTPException(
        status_code=PROVIDER_ERROR_STATUS.get(e.kind, 502),
        detail={
            "kind": e.kind.value,
            "provider": e.provider,
            "message": e.message,
            "upstream_status": e.http_status,
        },
    )


async def run_import(
    service: IngestionService, source: str, locator: Any, options: ImportOptions
) -> ImportResponse:
    try:
        result = await service.import_from_source(source, locator, options)
    except InvalidLocatorError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SourceUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except ProviderError as e:
        raise provider_http_error(e) from e
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return ImportResponse(**result.model_dump(), message=import_message(result))


@router.get("/google_places/search", response_model=PlaceSearchResponse)
async def search_places(
    query: str = Query(...),
    lat: float | None = Query(None),
    lng: float | None = Query(None),
    radius: int | None = Query(None),
    service: IngestionService = Depends(get_ingestion_service),
) -> PlaceSearchResponse:
    """Places candidates whose ``placeId`` can be passed to a google_places import."""
    try:
        search = PlaceSearchQuery(query=query, lat=lat, lng=lng, radius=radius)
    except ValidationError as e:
        raise HTTPException(
            status_code=422, detail=e.errors(include_url=False, include_context=False)
        ) from e

    try:
        places = await service.search_places(search)
    except SourceUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except ProviderError as e:
        raise provider_http_error(e) from e

    return PlaceSearchResponse(places=places, count=len(places))


@router.post("/{source}", response_model=ImportResponse)
async def import_reviews(
    source: str,
    request: ImportRequest,
    service: IngestionService = Depends(get_ingestion_service),
) -> ImportResponse:
    """Fetch and store reviews from one source.

    Partial failures still return 200 with a non-empty ``errors`` list.
    """
    options = ImportOptions(auto_approve=request.auto_approve, target_listing_id=request.listing_id)
    return await run_import(service, source, request.locator, options)
