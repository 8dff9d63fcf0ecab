"""Provider payload shapes.

Clients return review items as plain dicts tagged with ``kind``; each item is
validated against the ``RawReview`` union on its own during import, so one
malformed item is reported without losing the rest of the batch. Fields are
loose: a malformed timestamp or a missing rating is reported by the
normalizer, not here. Unknown provider fields are kept (``extra="allow"``)
and end up in review metadata.
"""

from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class RawModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Context attached by the client, not part of the provider payload.
    context_fields: ClassVar[frozenset[str]] = frozenset({"kind"})

    def payload(self) -> dict[str, Any]:
        """Provider fields exactly as received."""
        return self.model_dump(
            mode="json", by_alias=True, exclude_unset=True, exclude=set(self.context_fields)
        )


class RawPropertyCategory(RawModel):
    category: str | None = None
    rating: float | None = None
    max_rating: float | None = Field(default=None, alias="maxRating")


class RawPropertyReview(RawModel):
    """Review from the property-management API (Hostaway-style)."""

    kind: Literal["property_api"] = "property_api"

    id: int | str | None = None
    listing_map_id: int | str | None = Field(default=None, alias="listingMapId")
    listing_name: str | None = Field(default=None, alias="listingName")
    type: str | None = None
    status: str | None = None
    channel: str | None = None
    rating: float | None = None
    public_review: str | None = Field(default=None, alias="publicReview")
    review_category: list[RawPropertyCategory] = Field(default_factory=list, alias="reviewCategory")
    submitted_at: Any = Field(default=None, alias="submittedAt")
    guest_name: str | None = Field(default=None, alias="guestName")


class RawPlacesReview(RawModel):
    """One entry of ``result.reviews`` from Places Details."""

    context_fields: ClassVar[frozenset[str]] = frozenset({"kind", "place_id"})

    kind: Literal["google_places"] = "google_places"
    place_id: str

    author_name: str | None = None
    author_url: str | None = None
    language: str | None = None
    original_language: str | None = None
    profile_photo_url: str | None = None
    rating: float | None = None
    relative_time_description: str | None = None
    text: str | None = None
    time: Any = None
    translated: bool | None = None


class RawReviewer(RawModel):
    display_name: str | None = Field(default=None, alias="displayName")
    profile_photo_url: str | None = Field(default=None, alias="profilePhotoUrl")
    is_anonymous: bool = Field(default=False, alias="isAnonymous")


class RawReviewReply(RawModel):
    comment: str | None = None
    update_time: str | None = Field(default=None, alias="updateTime")


class RawBusinessReview(RawModel):
    """Review resource from the Business Profile v4 API."""

    context_fields: ClassVar[frozenset[str]] = frozenset({"kind", "location_name"})

    kind: Literal["google_business"] = "google_business"
    location_name: str

    name: str | None = None
    review_id: str | None = Field(default=None, alias="reviewId")
    reviewer: RawReviewer = Field(default_factory=RawReviewer)
    star_rating: str | None = Field(default=None, alias="starRating")
    comment: str | None = None
    create_time: Any = Field(default=None, alias="createTime")
    update_time: Any = Field(default=None, alias="updateTime")
    review_reply: RawReviewReply | None = Field(default=None, alias="reviewReply")


class RawManualReview(RawModel):
    """A review typed in by an operator."""

    kind: Literal["manual"] = "manual"

    external_id: str | None = None
    listing_ref: str | None = None
    guest_name: str | None = None
    comment: str | None = None
    rating: float | None = None
    scale: Literal[5, 10] = 10
    categories: dict[str, float] = Field(default_factory=dict)
    submitted_at: Any = None


RawReview = Annotated[
    Union[RawPropertyReview, RawPlacesReview, RawBusinessReview, RawManualReview],
    Field(discriminator="kind"),
]


class RawPlace(RawModel):
    place_id: str
    name: str | None = None
    formatted_address: str | None = None
    geometry: dict[str, Any] | None = None
    rating: float | None = None
    user_ratings_total: int | None = None
    business_status: str | None = None
    types: list[str] = Field(default_factory=list)


class RawPlaceDetails(RawPlace):
    # Validated per item during import.
    reviews: list[Any] = Field(default_factory=list)
    website: str | None = None
    formatted_phone_number: str | None = None
