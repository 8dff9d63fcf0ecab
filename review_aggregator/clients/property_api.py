"""Property-management API client (Hostaway-style reviews endpoint)."""

from typing import Any

from review_aggregator.clients.auth import BearerToken, TokenProvider, with_auth_retry
from review_aggregator.clients.base import SourceClient, tag_item
from review_aggregator.clients.errors import ProviderError, ProviderErrorKind


class PropertyApiClient(SourceClient):
    provider_name = "property_api"
    default_base_url = "https://api.hostaway.com/v1"

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        page_size: int = 100,
        max_pages: int = 50,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.token = BearerToken(token_provider, provider_name=self.provider_name)
        self.page_size = page_size
        self.max_pages = max_pages

    async def fetch_reviews(self, listing_id: str | None = None) -> list[dict[str, Any]]:
        """Raw reviews for one listing, or every listing when ``listing_id`` is None.

        Items are returned as received, tagged with ``kind``; validation
        happens per item during import.
        """
        reviews: list[dict[str, Any]] = []

        for page in range(self.max_pages):
            params: dict[str, Any] = {"limit": self.page_size, "offset": page * self.page_size}
            if listing_id is not None:
                params["listingId"] = listing_id

            body = await with_auth_retry(
                self.token,
                lambda token, params=params: self._get_json(
                    "/reviews",
                    params=params,
                    headers={"Authorization": f"Bearer {token}", "Cache-control": "no-cache"},
                ),
            )
            if body.get("status") != "success":
                raise ProviderError(
                    str(body.get("message") or "unexpected response status"),
                    kind=ProviderErrorKind.UNKNOWN,
                    provider=self.provider_name,
                    http_status=200,
                    upstream_payload=body,
                )

            batch = body.get("result") or []
            reviews.extend(tag_item(item, kind=self.provider_name) for item in batch)
            if len(batch) < self.page_size:
                break

        self.logger.info(
            "Property reviews fetched",
            extra={
                "listing_id": listing_id,
                "reviews_count": len(reviews),
                "operation": "property_reviews_fetch",
            },
        )
        return reviews
