"""Canonical review, listing and aggregate models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    """Base for models that leave the process as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReviewSource(str, Enum):
    """Where a review came from."""

    PROPERTY_API = "property_api"
    GOOGLE_PLACES = "google_places"
    GOOGLE_BUSINESS = "google_business"
    MANUAL = "manual"


class ReviewStatus(str, Enum):
    """Moderation status of a review."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


SYSTEM_APPROVER = "system"


class ListingHint(ApiModel):
    """Listing identity reported by the provider, used to attach reviews."""

    external_id: str
    name: str


class NormalizedReview(ApiModel):
    """Output of the normalizer; has no storage identity yet."""

    external_id: str
    source: ReviewSource
    guest_name: str
    comment: str = ""
    rating: float | None = None
    categories: dict[str, float] = Field(default_factory=dict)
    submitted_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)
    listing_hint: ListingHint | None = None


class Review(ApiModel):
    """Stored review. Only status and approval fields change after creation."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    external_id: str
    source: ReviewSource
    listing_id: str | None = None
    guest_name: str
    comment: str = ""
    rating: float | None = None
    categories: dict[str, float] = Field(default_factory=dict)
    status: ReviewStatus = ReviewStatus.PENDING
    approved_by: str | None = None
    approved_at: datetime | None = None
    submitted_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_normalized(
        cls,
        normalized: NormalizedReview,
        *,
        listing_id: str | None = None,
        status: ReviewStatus = ReviewStatus.PENDING,
        approved_by: str | None = None,
    ) -> "Review":
        now = utcnow()
        return cls(
            external_id=normalized.external_id,
            source=normalized.source,
            listing_id=listing_id,
            guest_name=normalized.guest_name,
            comment=normalized.comment,
            rating=normalized.rating,
            categories=dict(normalized.categories),
            status=status,
            approved_by=approved_by if status is not ReviewStatus.PENDING else None,
            approved_at=now if status is not ReviewStatus.PENDING else None,
            submitted_at=normalized.submitted_at,
            created_at=now,
            updated_at=now,
            metadata=normalized.metadata,
            raw=normalized.raw,
        )


class Listing(ApiModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    external_id: str
    name: str
    slug: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AggregateStats(ApiModel):
    """Per-listing statistics. Always present, even for listings without reviews."""

    total_reviews: int = 0
    approved_reviews: int = 0
    average_rating: float = 0.0
    rating_breakdown: dict[int, int] = Field(default_factory=dict)
    channel_breakdown: dict[str, int] = Field(default_factory=dict)
    last_review_date: datetime | None = None


class ListingWithStats(Listing):
    stats: AggregateStats = Field(default_factory=AggregateStats)


class ListingPage(ApiModel):
    listings: list[ListingWithStats]
    total: int
    page: int
    limit: int


class ImportItemError(ApiModel):
    index: int
    item_ref: str
    message: str


class ImportResult(ApiModel):
    imported: int = 0
    skipped: int = 0
    errors: list[ImportItemError] = Field(default_factory=list)
    no_items: bool = False
    cancelled: bool = False


class ListingStatsQuery(ApiModel):
    """Validated listing query; also the input of listing cache keys."""

    min_reviews: int = Field(0, ge=0)
    min_rating: float | None = Field(None, ge=0, le=10)
    max_rating: float | None = Field(None, ge=0, le=10)
    channels: list[ReviewSource] = Field(default_factory=list)
    search: str | None = Field(None, max_length=200)
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @model_validator(mode="after")
    def _canonicalize(self) -> "ListingStatsQuery":
        # Equivalent queries must serialize identically for cache keys.
        self.channels = sorted(set(self.channels), key=lambda source: source.value)
        if self.search is not None:
            self.search = self.search.strip() or None
        if (
            self.min_rating is not None
            and self.max_rating is not None
            and self.min_rating > self.max_rating
        ):
            raise ValueError("min_rating must not exceed max_rating")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class AuditAction(str, Enum):
    """Moderation transition recorded in a review's history."""

    APPROVED = "approved"
    REJECTED = "rejected"
    UNAPPROVED = "unapproved"

    @classmethod
    def for_status(cls, status: ReviewStatus) -> "AuditAction":
        if status is ReviewStatus.APPROVED:
            return cls.APPROVED
        if status is ReviewStatus.REJECTED:
            return cls.REJECTED
        return cls.UNAPPROVED


class ReviewAuditEntry(ApiModel):
    """One status change of one review. Entries are never updated."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    review_id: str
    action: AuditAction
    actor: str | None = None
    previous_status: ReviewStatus
    new_status: ReviewStatus
    timestamp: datetime = Field(default_factory=utcnow)


class ReviewHistory(ApiModel):
    review_id: str
    current_status: ReviewStatus
    entries: list[ReviewAuditEntry]


class BulkItemError(ApiModel):
    review_id: str
    message: str


class BulkStatusResult(ApiModel):
    status: ReviewStatus
    updated: int = 0
    failed: int = 0
    errors: list[BulkItemError] = Field(default_factory=list)


class ReviewQuery(ApiModel):
    """Validated review listing query; also the input of review page cache keys."""

    listing_id: str | None = None
    status: ReviewStatus | None = None
    channels: list[ReviewSource] = Field(default_factory=list)
    min_rating: float | None = Field(None, ge=0, le=10)
    max_rating: float | None = Field(None, ge=0, le=10)
    submitted_from: datetime | None = None
    submitted_to: datetime | None = None
    search: str | None = Field(None, max_length=200)
    sort_by: Literal["submitted_at", "rating", "created_at"] = "submitted_at"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @field_validator("submitted_from", "submitted_to")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _canonicalize(self) -> "ReviewQuery":
        self.channels = sorted(set(self.channels), key=lambda source: source.value)
        if self.search is not None:
            self.search = self.search.strip() or None
        if (
            self.min_rating is not None
            and self.max_rating is not None
            and self.min_rating > self.max_rating
        ):
            raise ValueError("min_rating must not exceed max_rating")
        if (
            self.submitted_from is not None
            and self.submitted_to is not None
            and self.submitted_from > self.submitted_to
        ):
            raise ValueError("submitted_from must not be after submitted_to")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class ReviewPage(ApiModel):
    reviews: list[Review]
    total: int
    page: int
    limit: int


class PlaceSearchQuery(ApiModel):
    query: str = Field(..., min_length=3, max_length=200)
    lat: float | None = Field(None, ge=-90, le=90)
    lng: float | None = Field(None, ge=-180, le=180)
    radius: int | None = Field(None, ge=1, le=50000)

    @model_validator(mode="after")
    def _location_pair(self) -> "PlaceSearchQuery":
        self.query = self.query.strip()
        if len(self.query) < 3:
            raise ValueError("query must have at least 3 characters")
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be given together")
        return self

    @property
    def location(self) -> tuple[float, float] | None:
        if self.lat is None or self.lng is None:
            return None
        return (self.lat, self.lng)


class PlaceSummary(ApiModel):
    """A search hit that can be passed to a google_places import."""

    place_id: str
    name: str | None = None
    address: str | None = None
    rating: float | None = Field(None, description="Provider rating on its own 1-5 scale")
    user_ratings_total: int | None = None
    business_status: str | None = None
    types: list[str] = Field(default_factory=list)
