"""Google Places web service client (text search and place details)."""

from typing import Any

from review_aggregator.clients.base import SourceClient, tag_item
from review_aggregator.clients.errors import ProviderError, kind_for_places_status
from review_aggregator.models.raw import RawPlace, RawPlaceDetails

DETAILS_FIELDS = (
    "place_id,name,formatted_address,geometry,rating,user_ratings_total,reviews,"
    "business_status,website,formatted_phone_number,types"
)


class GooglePlacesClient(SourceClient):
    provider_name = "google_places"
    default_base_url = "https://maps.googleapis.com/maps/api/place"

    def __init__(self, api_key: str, *, max_reviews: int = 5, **kwargs: Any):
        """Initialize Places client.

        Args:
            api_key: Places API key
            max_reviews: Cap on reviews returned by details (the API returns at most 5)
        """
        super().__init__(**kwargs)
        self.api_key = api_key
        self.max_reviews = max_reviews

    async def search(
        self,
        query: str,
        location: tuple[float, float] | None = None,
        radius: int | None = None,
    ) -> list[RawPlace]:
        """Text search for places.

        Args:
            query: Free-text query
            location: Optional (lat, lng) bias; only sent together with radius
            radius: Search radius in meters

        Returns:
            Matching places, possibly empty
        """
        params: dict[str, Any] = {"query": query, "key": self.api_key}
        if location is not None and radius:
            params["location"] = f"{location[0]},{location[1]}"
            params["radius"] = radius

        body = await self._get_json("/textsearch/json", params=params)
        self._check_status(body, allow_zero_results=True)

        places = [RawPlace.model_validate(item) for item in body.get("results") or []]
        self.logger.info(
            "Places search completed",
            extra={"query": query, "results_count": len(places), "operation": "places_search"},
        )
        return places

    async def fetch_details(self, place_id: str) -> RawPlaceDetails:
        """Place details including up to ``max_reviews`` raw reviews."""
        params = {"place_id": place_id, "key": self.api_key, "fields": DETAILS_FIELDS}
        body = await self._get_json("/details/json", params=params)
        self._check_status(body, allow_zero_results=False)

        result = dict(body.get("result") or {})
        result.setdefault("place_id", place_id)
        reviews = result.get("reviews") or []
        result["reviews"] = [
            tag_item(review, kind=self.provider_name, place_id=result["place_id"])
            for review in reviews[: self.max_reviews]
        ]
        details = RawPlaceDetails.model_validate(result)

        self.logger.info(
            "Place details fetched",
            extra={
                "place_id": place_id,
                "name": details.name,
                "reviews_count": len(details.reviews),
                "operation": "places_details",
            },
        )
        return details

    def _check_status(self, body: dict[str, Any], *, allow_zero_results: bool) -> None:
        status = str(body.get("status", ""))
        if status == "OK" or (allow_zero_results and status == "ZERO_RESULTS"):
            return
        raise ProviderError(
            body.get("error_message") or status or "missing status",
            kind=kind_for_places_status(status),
            provider=self.provider_name,
            http_status=200,
            upstream_payload=body,
        )
