"""Google Business Profile reviews client."""

import re
from typing import Any

from review_aggregator.clients.auth import BearerToken, TokenProvider, with_auth_retry
from review_aggregator.clients.base import SourceClient, tag_item

LOCATION_NAME = re.compile(r"^accounts/[^/\s]+/locations/[^/\s]+$")


def is_location_name(value: str) -> bool:
    """``accounts/{accountId}/locations/{locationId}``"""
    return bool(LOCATION_NAME.match(value or ""))


class GoogleBusinessClient(SourceClient):
    provider_name = "google_business"
    default_base_url = "https://mybusiness.googleapis.com/v4"
    page_size = 50

    def __init__(self, token_provider: TokenProvider, *, max_pages: int = 10, **kwargs: Any):
        super().__init__(**kwargs)
        self.token = BearerToken(token_provider, provider_name=self.provider_name)
        self.max_pages = max_pages

    async def fetch_reviews(self, location_name: str) -> list[dict[str, Any]]:
        """All reviews of a verified location, newest first, across pages.

        Args:
            location_name: ``accounts/{accountId}/locations/{locationId}``

        Returns:
            Raw review objects tagged with ``kind`` and the location name
        """
        reviews: list[dict[str, Any]] = []
        page_token: str | None = None
        total_review_count = None

        for _ in range(self.max_pages):
            params: dict[str, Any] = {"pageSize": self.page_size, "orderBy": "updateTime desc"}
            if page_token:
                params["pageToken"] = page_token

            body = await with_auth_retry(
                self.token,
                lambda token, params=params: self._get_json(
                    f"/{location_name}/reviews",
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                ),
            )

            total_review_count = body.get("totalReviewCount", total_review_count)
            reviews.extend(
                tag_item(item, kind=self.provider_name, location_name=location_name)
                for item in body.get("reviews") or []
            )
            page_token = body.get("nextPageToken")
            if not page_token:
                break
        else:
            if page_token:
                self.logger.warning(
                    "Stopped paging before the last page",
                    extra={
                        "location_name": location_name,
                        "max_pages": self.max_pages,
                        "operation": "business_reviews_truncated",
                    },
                )

        self.logger.info(
            "Business reviews fetched",
            extra={
                "location_name": location_name,
                "reviews_count": len(reviews),
                "total_review_count": total_review_count,
                "operation": "business_reviews_fetch",
            },
        )
        return reviews
