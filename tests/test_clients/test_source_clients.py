"""Tests for the provider clients against mocked HTTP transports."""

import httpx
import pytest

from review_aggregator.clients.errors import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderErrorKind,
)
from review_aggregator.clients.google_business import GoogleBusinessClient, is_location_name
from review_aggregator.clients.google_places import GooglePlacesClient
from review_aggregator.clients.property_api import PropertyApiClient


class FakeTokenProvider:
    def __init__(self, tokens=None, error=None):
        self.tokens = list(tokens or ["token-1", "token-2", "token-3"])
        self.error = error
        self.calls = 0

    async def fetch_token(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.tokens.pop(0)


def mock_http(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def places_review(time, author="Jane"):
    return {"author_name": author, "rating": 5, "text": "Great", "time": time}


class TestGooglePlaces:
    """Test the Places client."""

    @pytest.mark.asyncio
    async def test_fetch_details_caps_reviews_and_tags_place(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "status": "OK",
                    "result": {
                        "place_id": "ChIJ1",
                        "name": "Shoreditch Heights",
                        "reviews": [places_review(1700000000 + i) for i in range(7)],
                    },
                },
            )

        client = GooglePlacesClient(
            "key", max_reviews=5, min_delay_seconds=0, http_client=mock_http(handler)
        )
        details = await client.fetch_details("ChIJ1")

        assert details.name == "Shoreditch Heights"
        assert len(details.reviews) == 5
        assert all(review["place_id"] == "ChIJ1" for review in details.reviews)
        assert all(review["kind"] == "google_places" for review in details.reviews)
        assert seen[0].url.path.endswith("/details/json")
        assert seen[0].url.params["place_id"] == "ChIJ1"
        assert "reviews" in seen[0].url.params["fields"]

    @pytest.mark.asyncio
    async def test_search(self):
        def handler(request):
            assert request.url.params["location"] == "51.5,-0.1"
            assert request.url.params["radius"] == "500"
            return httpx.Response(
                200,
                json={"status": "OK", "results": [{"place_id": "a", "name": "A", "rating": 4.5}]},
            )

        client = GooglePlacesClient("key", min_delay_seconds=0, http_client=mock_http(handler))
        places = await client.search("flats", location=(51.5, -0.1), radius=500)

        assert [place.place_id for place in places] == ["a"]

    @pytest.mark.asyncio
    async def test_search_zero_results(self):
        client = GooglePlacesClient(
            "key",
            min_delay_seconds=0,
            http_client=mock_http(
                lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS"})
            ),
        )
        assert await client.search("nowhere") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,kind",
        [
            ("REQUEST_DENIED", ProviderErrorKind.ACCESS_DENIED),
            ("OVER_QUERY_LIMIT", ProviderErrorKind.QUOTA_EXCEEDED),
            ("INVALID_REQUEST", ProviderErrorKind.INVALID_REQUEST),
            ("NOT_FOUND", ProviderErrorKind.NOT_FOUND),
            ("ZERO_RESULTS", ProviderErrorKind.UNKNOWN),
        ],
    )
    async def test_body_status_mapped(self, status, kind):
        def handler(request):
            return httpx.Response(200, json={"status": status, "error_message": "nope"})

        client = GooglePlacesClient("key", min_delay_seconds=0, http_client=mock_http(handler))

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch_details("ChIJ1")

        assert exc_info.value.kind is kind
        assert exc_info.value.provider == "google_places"

    @pytest.mark.asyncio
    async def test_http_status_mapped(self):
        client = GooglePlacesClient(
            "key",
            min_delay_seconds=0,
            http_client=mock_http(
                lambda request: httpx.Response(429, json={"error": {"message": "slow down"}})
            ),
        )

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch_details("ChIJ1")

        assert exc_info.value.kind is ProviderErrorKind.QUOTA_EXCEEDED
        assert exc_info.value.http_status == 429
        assert exc_info.value.message == "slow down"

    @pytest.mark.asyncio
    async def test_network_failure_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = GooglePlacesClient("key", min_delay_seconds=0, http_client=mock_http(handler))

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch_details("ChIJ1")

        assert exc_info.value.kind is ProviderErrorKind.UNREACHABLE
        assert exc_info.value.http_status is None


class TestGoogleBusiness:
    """Test the Business Profile client."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("accounts/1/locations/2", True),
            ("locations/2", False),
            ("accounts/1/locations/", False),
            ("", False),
        ],
    )
    def test_location_name(self, value, expected):
        assert is_location_name(value) is expected

    @pytest.mark.asyncio
    async def test_pages_through_results(self):
        pages = {
            None: {
                "reviews": [{"reviewId": "r1", "starRating": "FIVE"}],
                "nextPageToken": "p2",
                "totalReviewCount": 2,
            },
            "p2": {"reviews": [{"reviewId": "r2", "starRating": "TWO"}]},
        }

        def handler(request):
            assert request.headers["Authorization"] == "Bearer token-1"
            assert request.url.path == "/v4/accounts/1/locations/2/reviews"
            return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

        client = GoogleBusinessClient(
            FakeTokenProvider(), min_delay_seconds=0, http_client=mock_http(handler)
        )
        reviews = await client.fetch_reviews("accounts/1/locations/2")

        assert [r["reviewId"] for r in reviews] == ["r1", "r2"]
        assert all(r["location_name"] == "accounts/1/locations/2" for r in reviews)

    @pytest.mark.asyncio
    async def test_stops_at_max_pages(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"reviews": [], "nextPageToken": "more"})

        client = GoogleBusinessClient(
            FakeTokenProvider(), max_pages=3, min_delay_seconds=0, http_client=mock_http(handler)
        )
        await client.fetch_reviews("accounts/1/locations/2")

        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_refreshes_token_once_on_401(self):
        tokens = FakeTokenProvider()
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            if request.headers["Authorization"] == "Bearer token-1":
                return httpx.Response(401, json={"error": {"message": "expired"}})
            return httpx.Response(200, json={"reviews": [{"reviewId": "r1"}]})

        client = GoogleBusinessClient(tokens, min_delay_seconds=0, http_client=mock_http(handler))
        reviews = await client.fetch_reviews("accounts/1/locations/2")

        assert len(reviews) == 1
        assert seen == ["Bearer token-1", "Bearer token-2"]
        assert tokens.calls == 2

    @pytest.mark.asyncio
    async def test_second_401_is_not_retried(self):
        tokens = FakeTokenProvider()
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": {"message": "revoked"}})

        client = GoogleBusinessClient(tokens, min_delay_seconds=0, http_client=mock_http(handler))

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch_reviews("accounts/1/locations/2")

        assert exc_info.value.kind is ProviderErrorKind.UNAUTHORIZED
        assert len(calls) == 2
        assert tokens.calls == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_clears_token(self):
        request = httpx.Request("POST", "https://oauth2.googleapis.com/token")
        error = httpx.HTTPStatusError(
            "bad grant", request=request, response=httpx.Response(400, request=request)
        )
        client = GoogleBusinessClient(
            FakeTokenProvider(error=error),
            min_delay_seconds=0,
            http_client=mock_http(lambda request: httpx.Response(200, json={})),
        )

        with pytest.raises(ProviderAuthenticationError) as exc_info:
            await client.fetch_reviews("accounts/1/locations/2")

        assert exc_info.value.http_status == 400
        assert client.token.value is None


class TestPropertyApi:
    """Test the property-management API client."""

    @pytest.mark.asyncio
    async def test_pages_until_short_batch(self):
        offsets = []

        def handler(request):
            offset = int(request.url.params["offset"])
            offsets.append(offset)
            assert request.url.params["listingId"] == "101"
            size = 2 if offset < 4 else 1
            result = [{"id": offset + i, "listingMapId": 101} for i in range(size)]
            return httpx.Response(200, json={"status": "success", "result": result})

        client = PropertyApiClient(
            FakeTokenProvider(), page_size=2, min_delay_seconds=0, http_client=mock_http(handler)
        )
        reviews = await client.fetch_reviews("101")

        assert offsets == [0, 2, 4]
        assert [r["id"] for r in reviews] == [0, 1, 2, 3, 4]
        assert all(r["kind"] == "property_api" for r in reviews)

    @pytest.mark.asyncio
    async def test_malformed_items_returned_as_received(self):
        result = [{"id": 1, "rating": "n/a"}, "garbage", {"id": 3}]
        client = PropertyApiClient(
            FakeTokenProvider(),
            min_delay_seconds=0,
            http_client=mock_http(
                lambda request: httpx.Response(200, json={"status": "success", "result": result})
            ),
        )

        reviews = await client.fetch_reviews()

        assert reviews == [
            {"id": 1, "rating": "n/a", "kind": "property_api"},
            "garbage",
            {"id": 3, "kind": "property_api"},
        ]

    @pytest.mark.asyncio
    async def test_unsuccessful_body(self):
        client = PropertyApiClient(
            FakeTokenProvider(),
            min_delay_seconds=0,
            http_client=mock_http(
                lambda request: httpx.Response(200, json={"status": "fail", "message": "bad"})
            ),
        )

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch_reviews()

        assert exc_info.value.kind is ProviderErrorKind.UNKNOWN
        assert exc_info.value.message == "bad"

    @pytest.mark.asyncio
    async def test_forbidden(self):
        client = PropertyApiClient(
            FakeTokenProvider(),
            min_delay_seconds=0,
            http_client=mock_http(lambda request: httpx.Response(403, json={"message": "no"})),
        )

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch_reviews()

        assert exc_info.value.kind is ProviderErrorKind.ACCESS_DENIED
        assert client.usage_stats()["request_count"] == 1
