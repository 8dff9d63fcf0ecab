"""Tests for the HTTP endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from review_aggregator.cache.review_cache import MemoryCacheStore, ReviewCache
from review_aggregator.clients.errors import ProviderError, ProviderErrorKind
from review_aggregator.core.config import Settings
from review_aggregator.dependencies import ServiceContainer
from review_aggregator.main import create_app
from review_aggregator.models.raw import RawPlace, RawPlaceDetails, RawPlacesReview
from review_aggregator.storage.memory import InMemoryReviewRepository


@pytest.fixture
def places_client():
    client = MagicMock()
    client.fetch_details = AsyncMock(
        return_value=RawPlaceDetails(
            place_id="ChIJ1",
            reviews=[
                RawPlacesReview(place_id="ChIJ1", author_name="A", rating=5, time=1700000000),
                RawPlacesReview(place_id="ChIJ1", author_name="B", rating=4, time="yesterday"),
            ],
        )
    )
    return client


@pytest.fixture
def client(places_client):
    """Test client over in-memory storage and cache."""
    container = ServiceContainer.create(
        InMemoryReviewRepository(),
        ReviewCache(MemoryCacheStore()),
        places_client=places_client,
    )
    app = create_app(settings=Settings(), container=container)
    with TestClient(app) as test_client:
        yield test_client


def create_listing(client, external_id="101", name="Sea View"):
    response = client.post("/api/v1/listings", json={"externalId": external_id, "name": name})
    assert response.status_code == 201
    return response.json()


def add_manual_review(client, listing_id, rating, **fields):
    response = client.post(
        "/api/v1/reviews/manual",
        json={"listingId": listing_id, "guestName": "Walk-in", "rating": rating, **fields},
    )
    assert response.status_code == 200
    return response.json()


def stored_review_ids(client):
    return list(client.app.state.container.repository.reviews)


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


class TestListingEndpoints:
    """Test listing endpoints."""

    def test_create_listing(self, client):
        """Test creating listings with colliding names."""
        first = create_listing(client, "101", "Sea View")
        second = create_listing(client, "102", "Sea View")

        assert first["slug"] == "sea-view"
        assert second["slug"] == "sea-view-1"
        assert "externalId" in first

    def test_duplicate_external_id(self, client):
        create_listing(client, "101")

        response = client.post("/api/v1/listings", json={"externalId": "101", "name": "Other"})

        assert response.status_code == 409

    def test_get_listing_and_stats(self, client):
        listing = create_listing(client)
        add_manual_review(client, listing["id"], 8, externalId="m-1")
        add_manual_review(client, listing["id"], 4, scale=5, externalId="m-2")

        detail = client.get(f"/api/v1/listings/{listing['id']}")
        stats = client.get(f"/api/v1/listings/{listing['id']}/stats")

        assert detail.status_code == 200
        assert detail.json()["stats"]["totalReviews"] == 2
        assert stats.json()["averageRating"] == 8.0
        assert stats.json()["ratingBreakdown"] == {"8": 2}
        assert stats.json()["channelBreakdown"] == {"manual": 2}

    def test_unknown_listing(self, client):
        assert client.get("/api/v1/listings/missing").status_code == 404
        assert client.get("/api/v1/listings/missing/stats").status_code == 404

    def test_lookup_by_slug_and_external_id(self, client):
        listing = create_listing(client, "101", "Sea View")

        by_slug = client.get("/api/v1/listings/slug/sea-view")
        by_external_id = client.get("/api/v1/listings/external/101")

        assert by_slug.status_code == by_external_id.status_code == 200
        assert by_slug.json()["id"] == by_external_id.json()["id"] == listing["id"]
        assert "stats" in by_slug.json()
        assert client.get("/api/v1/listings/slug/missing").status_code == 404
        assert client.get("/api/v1/listings/external/999").status_code == 404

    def test_list_listings_filters_and_sorts(self, client):
        low = create_listing(client, "1", "Low")
        high = create_listing(client, "2", "High")
        create_listing(client, "3", "Empty")
        add_manual_review(client, low["id"], 5, externalId="l-1")
        add_manual_review(client, high["id"], 9, externalId="h-1")

        everything = client.get("/api/v1/listings").json()
        assert [item["name"] for item in everything["listings"]] == ["High", "Low", "Empty"]
        assert everything["total"] == 3

        ascending = client.get("/api/v1/listings", params={"sortOrder": "asc"}).json()
        assert [item["name"] for item in ascending["listings"]] == ["Low", "High", "Empty"]

        filtered = client.get("/api/v1/listings", params={"minRating": 6, "channel": "manual"})
        assert [item["name"] for item in filtered.json()["listings"]] == ["High"]

        page = client.get("/api/v1/listings", params={"page": 2, "limit": 2}).json()
        assert [item["name"] for item in page["listings"]] == ["Empty"]
        assert (page["page"], page["limit"], page["total"]) == (2, 2, 3)

    @pytest.mark.parametrize(
        "params",
        [
            {"minRating": 8, "maxRating": 2},
            {"limit": 101},
            {"page": 0},
            {"channel": "tripadvisor"},
            {"minRating": 11},
        ],
    )
    def test_invalid_query(self, client, params):
        assert client.get("/api/v1/listings", params=params).status_code == 422


class TestReviewEndpoints:
    """Test manual reviews and moderation."""

    def test_manual_review_pending_by_default(self, client):
        listing = create_listing(client)

        body = add_manual_review(client, listing["id"], 7, externalId="m-1")

        assert body["imported"] == 1
        assert body["success"] is True
        assert body["message"] == "Imported 1 reviews, skipped 0"
        stats = client.get(f"/api/v1/listings/{listing['id']}/stats").json()
        assert stats["approvedReviews"] == 0

    def test_repeated_manual_review_is_skipped(self, client):
        listing = create_listing(client)
        add_manual_review(client, listing["id"], 7, externalId="m-1")

        body = add_manual_review(client, listing["id"], 7, externalId="m-1")

        assert (body["imported"], body["skipped"]) == (0, 1)

    @pytest.mark.parametrize(
        "payload",
        [
            {"rating": 6, "scale": 5},
            {"rating": 11},
            {"rating": 7, "scale": 7},
        ],
    )
    def test_manual_review_validation(self, client, payload):
        listing = create_listing(client)

        response = client.post(
            "/api/v1/reviews/manual", json={"listingId": listing["id"], **payload}
        )

        assert response.status_code == 422

    def test_manual_review_needs_listing(self, client):
        assert client.post("/api/v1/reviews/manual", json={"rating": 5}).status_code == 422
        response = client.post("/api/v1/reviews/manual", json={"listingId": "missing"})
        assert response.status_code == 400

    def test_update_status(self, client):
        listing = create_listing(client)
        add_manual_review(client, listing["id"], 7, externalId="m-1")
        review_id = next(iter(client.app.state.container.repository.reviews))

        response = client.patch(
            f"/api/v1/reviews/{review_id}/status",
            json={"status": "approved", "approvedBy": "alice"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["approvedBy"] == "alice"
        stats = client.get(f"/api/v1/listings/{listing['id']}/stats").json()
        assert stats["approvedReviews"] == 1

    def test_update_unknown_review(self, client):
        response = client.patch("/api/v1/reviews/missing/status", json={"status": "rejected"})

        assert response.status_code == 404

    def test_invalid_status(self, client):
        response = client.patch("/api/v1/reviews/x/status", json={"status": "published"})

        assert response.status_code == 422


    def test_list_reviews(self, client):
        listing = create_listing(client)
        add_manual_review(client, listing["id"], 8, externalId="m-1", comment="Great view")
        add_manual_review(client, listing["id"], 4, externalId="m-2", comment="Noisy")

        by_rating = client.get(
            "/api/v1/reviews",
            params={"listingId": listing["id"], "sortBy": "rating", "sortOrder": "asc"},
        ).json()
        assert [r["rating"] for r in by_rating["reviews"]] == [4.0, 8.0]
        assert (by_rating["total"], by_rating["page"], by_rating["limit"]) == (2, 1, 20)

        rated = client.get("/api/v1/reviews", params={"minRating": 5}).json()
        assert [r["comment"] for r in rated["reviews"]] == ["Great view"]

        searched = client.get("/api/v1/reviews", params={"search": "noisy"}).json()
        assert [r["rating"] for r in searched["reviews"]] == [4.0]

        approved = client.get("/api/v1/reviews", params={"status": "approved"}).json()
        assert approved["total"] == 0

    @pytest.mark.parametrize(
        "params",
        [
            {"minRating": 8, "maxRating": 2},
            {"from": "2024-02-01T00:00:00Z", "to": "2024-01-01T00:00:00Z"},
            {"limit": 0},
            {"page": 0},
            {"channel": "tripadvisor"},
            {"status": "published"},
            {"sortBy": "guest_name"},
        ],
    )
    def test_invalid_review_query(self, client, params):
        assert client.get("/api/v1/reviews", params=params).status_code == 422

    def test_get_review_and_history(self, client):
        listing = create_listing(client)
        add_manual_review(client, listing["id"], 7, externalId="m-1")
        (review_id,) = stored_review_ids(client)
        for status, approver in (("approved", "alice"), ("rejected", "bob")):
            client.patch(
                f"/api/v1/reviews/{review_id}/status",
                json={"status": status, "approvedBy": approver},
            )

        review = client.get(f"/api/v1/reviews/{review_id}")
        history = client.get(f"/api/v1/reviews/{review_id}/history")

        assert review.status_code == 200
        assert review.json()["status"] == "rejected"
        assert history.json()["currentStatus"] == "rejected"
        assert [(e["action"], e["actor"]) for e in history.json()["entries"]] == [
            ("rejected", "bob"),
            ("approved", "alice"),
        ]
        assert history.json()["entries"][0]["previousStatus"] == "approved"

    def test_unknown_review_lookup(self, client):
        assert client.get("/api/v1/reviews/missing").status_code == 404
        assert client.get("/api/v1/reviews/missing/history").status_code == 404

    def test_bulk_status(self, client):
        listing = create_listing(client)
        add_manual_review(client, listing["id"], 7, externalId="m-1")
        add_manual_review(client, listing["id"], 9, externalId="m-2")
        review_ids = stored_review_ids(client)

        response = client.post(
            "/api/v1/reviews/bulk-status",
            json={"reviewIds": review_ids, "status": "approved", "approvedBy": "alice"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert (response.json()["updated"], response.json()["failed"]) == (2, 0)
        stats = client.get(f"/api/v1/listings/{listing['id']}/stats").json()
        assert stats["approvedReviews"] == 2

    def test_bulk_status_partial_failure(self, client):
        listing = create_listing(client)
        add_manual_review(client, listing["id"], 7, externalId="m-1")
        (review_id,) = stored_review_ids(client)

        response = client.post(
            "/api/v1/reviews/bulk-status",
            json={"reviewIds": [review_id, "missing"], "status": "rejected"},
        )

        assert response.status_code == 207
        body = response.json()
        assert body["success"] is False
        assert (body["updated"], body["failed"]) == (1, 1)
        assert body["errors"] == [{"reviewId": "missing", "message": "review not found"}]
        assert body["message"] == "Partially completed: 1 updated, 1 failed"

    @pytest.mark.parametrize(
        "payload",
        [
            {"reviewIds": [], "status": "approved"},
            {"reviewIds": [str(i) for i in range(101)], "status": "approved"},
            {"reviewIds": ["a"], "status": "published"},
        ],
    )
    def test_bulk_status_validation(self, client, payload):
        assert client.post("/api/v1/reviews/bulk-status", json=payload).status_code == 422


class TestImportEndpoints:
    """Test source imports."""

    def test_import_with_partial_failure(self, client, places_client):
        response = client.post(
            "/api/v1/imports/google_places", json={"locator": "ChIJ1", "autoApprove": True}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["imported"] == 1
        assert body["errors"][0]["index"] == 2
        assert body["errors"][0]["itemRef"] == "google_places:ChIJ1:yesterday"
        assert body["message"] == "Imported 1 reviews, skipped 0, 1 failed"
        places_client.fetch_details.assert_awaited_once_with("ChIJ1")

    def test_malformed_item_reported_not_fatal(self, client, places_client):
        places_client.fetch_details.return_value = RawPlaceDetails(
            place_id="ChIJ1",
            reviews=[
                {"kind": "google_places", "place_id": "ChIJ1", "rating": 5, "time": 1700000000},
                {"kind": "google_places", "place_id": "ChIJ1", "rating": "n/a", "time": 1},
                {"kind": "google_places", "place_id": "ChIJ1", "rating": 3, "time": 1700000100},
            ],
        )

        response = client.post("/api/v1/imports/google_places", json={"locator": "ChIJ1"})

        assert response.status_code == 200
        body = response.json()
        assert body["imported"] == 2
        assert [(e["index"], e["itemRef"]) for e in body["errors"]] == [
            (2, "google_places:ChIJ1:1")
        ]

    def test_no_items(self, client, places_client):
        places_client.fetch_details.return_value = RawPlaceDetails(place_id="ChIJ1")

        body = client.post("/api/v1/imports/google_places", json={"locator": "ChIJ1"}).json()

        assert body["noItems"] is True
        assert body["message"] == "No reviews found for this source"

    @pytest.mark.parametrize(
        "kind,status_code",
        [
            (ProviderErrorKind.QUOTA_EXCEEDED, 429),
            (ProviderErrorKind.ACCESS_DENIED, 403),
            (ProviderErrorKind.NOT_FOUND, 404),
            (ProviderErrorKind.UNREACHABLE, 504),
            (ProviderErrorKind.UNAUTHORIZED, 502),
        ],
    )
    def test_provider_errors(self, client, places_client, kind, status_code):
        places_client.fetch_details.side_effect = ProviderError(
            "upstream said no", kind=kind, provider="google_places", http_status=None
        )

        response = client.post("/api/v1/imports/google_places", json={"locator": "ChIJ1"})

        assert response.status_code == status_code
        assert response.json()["detail"]["kind"] == kind.value
        assert response.json()["detail"]["provider"] == "google_places"

    def test_unconfigured_source(self, client):
        response = client.post(
            "/api/v1/imports/google_business", json={"locator": "accounts/1/locations/2"}
        )

        assert response.status_code == 503

    def test_bad_locator(self, client):
        assert client.post("/api/v1/imports/google_places", json={}).status_code == 400
        assert client.post("/api/v1/imports/tripadvisor", json={"locator": "x"}).status_code == 400


class TestPlaceSearchEndpoint:
    """Test Places search."""

    def test_search(self, client, places_client):
        places_client.search = AsyncMock(
            return_value=[RawPlace(place_id="ChIJ1", name="Shoreditch Heights", rating=4.6)]
        )

        response = client.get(
            "/api/v1/imports/google_places/search",
            params={"query": "shoreditch", "lat": 51.52, "lng": -0.07, "radius": 500},
        )

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert response.json()["places"][0]["placeId"] == "ChIJ1"
        places_client.search.assert_awaited_once_with(
            "shoreditch", location=(51.52, -0.07), radius=500
        )

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"query": "ab"},
            {"query": "shoreditch", "lat": 51.5},
            {"query": "shoreditch", "lat": 91, "lng": 0},
            {"query": "shoreditch", "radius": 50001},
        ],
    )
    def test_invalid_search(self, client, params):
        response = client.get("/api/v1/imports/google_places/search", params=params)

        assert response.status_code == 422

    def test_provider_error(self, client, places_client):
        places_client.search = AsyncMock(
            side_effect=ProviderError(
                "quota", kind=ProviderErrorKind.QUOTA_EXCEEDED, provider="google_places"
            )
        )

        response = client.get("/api/v1/imports/google_places/search", params={"query": "harbour"})

        assert response.status_code == 429

    def test_unconfigured(self):
        container = ServiceContainer.create(
            InMemoryReviewRepository(), ReviewCache(MemoryCacheStore())
        )
        app = create_app(settings=Settings(), container=container)
        with TestClient(app) as test_client:
            response = test_client.get(
                "/api/v1/imports/google_places/search", params={"query": "harbour"}
            )

        assert response.status_code == 503
