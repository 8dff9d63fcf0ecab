"""Map raw provider reviews onto the canonical review schema.

Everything here is pure and deterministic: the same raw item always produces
the same ``NormalizedReview``. Failures raise ``NormalizationError`` so the
ingestion loop can record them per item and continue with the batch.
"""

import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import TypeAdapter, ValidationError

from review_aggregator.core.errors import NormalizationError
from review_aggregator.models.raw import (
    RawBusinessReview,
    RawManualReview,
    RawModel,
    RawPlacesReview,
    RawPropertyReview,
    RawReview,
)
from review_aggregator.models.reviews import ListingHint, NormalizedReview, ReviewSource

MAX_NAME_LENGTH = 255
MAX_COMMENT_LENGTH = 5000
DEFAULT_GUEST_NAME = "Anonymous Guest"
ANONYMOUS_REVIEWER = "Anonymous"

# Google star ratings are 1-5; everything is stored on 0-10.
GOOGLE_SCALE = 2.0

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

CHANNELS = {
    "airbnb": "airbnb",
    "booking": "booking.com",
    "bookingcom": "booking.com",
    "booking.com": "booking.com",
    "vrbo": "vrbo",
    "direct": "direct",
    "directbooking": "direct",
}

_WHITESPACE = re.compile(r"\s+")
_FRACTION = re.compile(r"\.(\d+)")
_EPOCH = re.compile(r"^\d+(\.\d+)?$")
_NAIVE_SQL_FORMAT = "%Y-%m-%d %H:%M:%S"


def round_half_up(value: float, places: int) -> float:
    """Round half away from zero, unlike the builtin banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def parse_timestamp(value: Any) -> datetime:
    """Parse a provider timestamp into an aware UTC datetime.

    Accepts Unix epoch seconds (int, float or numeric string), ISO 8601 with
    ``Z`` or an offset, and ``YYYY-MM-DD HH:MM:SS``. Naive values are UTC.

    Raises:
        NormalizationError: value is missing or not in a supported format
    """
    if value is None or isinstance(value, bool):
        raise NormalizationError(f"unparseable timestamp: {value!r}")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = _from_epoch(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise NormalizationError("unparseable timestamp: ''")
        if text.isdigit():
            parsed = _from_epoch(int(text))
        elif _EPOCH.match(text):
            parsed = _from_epoch(float(text))
        else:
            parsed = _from_text(text)
    else:
        raise NormalizationError(f"unparseable timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _from_epoch(seconds: float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise NormalizationError(f"unparseable timestamp: {seconds!r}") from exc


def _from_text(text: str) -> datetime:
    try:
        return datetime.strptime(text, _NAIVE_SQL_FORMAT)
    except ValueError:
        pass

    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits.
    iso = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), iso, count=1)
    try:
        return datetime.fromisoformat(iso)
    except ValueError as exc:
        raise NormalizationError(f"unparseable timestamp: {text!r}") from exc


def to_utc_iso(value: datetime) -> str:
    """ISO 8601 in UTC with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def sanitize_name(value: str | None, default: str = DEFAULT_GUEST_NAME) -> str:
    name = _WHITESPACE.sub(" ", value or "").strip()
    return name[:MAX_NAME_LENGTH].rstrip() or default


def sanitize_comment(value: str | None) -> str:
    text = (value or "").replace("\r\n", "\n").replace("\r", "\n").strip()
    return text[:MAX_COMMENT_LENGTH]


def map_channel(value: str | None) -> str:
    """Booking channel reported by the property API, reduced to a known set."""
    key = (value or "").strip().lower().replace(" ", "").replace("_", "")
    if not key:
        return "other"
    if key in CHANNELS:
        return CHANNELS[key]
    if key.startswith("google"):
        return "google"
    return "other"


def derive_rating(
    explicit: float | None,
    categories: dict[str, float] | None = None,
) -> float | None:
    """Overall rating on 0-10.

    The explicit rating wins; otherwise the mean of the (already 0-10)
    category ratings; otherwise None. Result is rounded to one decimal.

    Example:
        >>> derive_rating(None, {"cleanliness": 10, "communication": 8})
        9.0
    """
    if explicit is not None:
        return _checked_rating(explicit)
    if categories:
        mean = sum(categories.values()) / len(categories)
        return _checked_rating(mean)
    return None


def _checked_rating(value: float) -> float:
    rating = round_half_up(float(value), 1)
    if not 0 <= rating <= 10:
        raise NormalizationError(f"rating out of range: {value!r}")
    return rating


def normalize_property_review(raw: RawPropertyReview) -> NormalizedReview:
    if raw.id is None:
        raise NormalizationError("review has no id")
    listing_key = raw.listing_map_id if raw.listing_map_id is not None else raw.listing_name
    if listing_key is None or str(listing_key).strip() == "":
        raise NormalizationError("review has no listing reference")
    listing_key = str(listing_key).strip()

    # Unrounded 0-10 scores feed the mean; the stored map is rounded.
    scaled: dict[str, float] = {}
    for category in raw.review_category:
        if not category.category or category.rating is None:
            continue
        max_rating = category.max_rating or 10
        if max_rating <= 0:
            raise NormalizationError(f"invalid max rating for {category.category!r}")
        scaled[category.category] = category.rating * 10 / max_rating
    categories = {name: round_half_up(value, 1) for name, value in scaled.items()}

    metadata = _unpromoted(
        raw,
        {"id", "listing_map_id", "rating", "public_review", "review_category", "submitted_at",
         "guest_name"},
    )
    metadata["channel"] = map_channel(raw.channel)
    if raw.channel is not None:
        metadata["provider_channel"] = raw.channel

    return NormalizedReview(
        external_id=f"{ReviewSource.PROPERTY_API.value}-{listing_key}-{raw.id}",
        source=ReviewSource.PROPERTY_API,
        guest_name=sanitize_name(raw.guest_name),
        comment=sanitize_comment(raw.public_review),
        rating=derive_rating(raw.rating, scaled),
        categories=categories,
        submitted_at=parse_timestamp(raw.submitted_at),
        metadata=metadata,
        raw=raw.payload(),
        listing_hint=ListingHint(
            external_id=listing_key,
            name=sanitize_name(raw.listing_name, default=f"Listing {listing_key}"),
        ),
    )


def normalize_places_review(raw: RawPlacesReview) -> NormalizedReview:
    submitted_at = parse_timestamp(raw.time)
    time_key = int(submitted_at.timestamp())
    rating = None if raw.rating is None else raw.rating * GOOGLE_SCALE

    return NormalizedReview(
        external_id=f"{ReviewSource.GOOGLE_PLACES.value}-{raw.place_id}-{time_key}",
        source=ReviewSource.GOOGLE_PLACES,
        guest_name=sanitize_name(raw.author_name),
        comment=sanitize_comment(raw.text),
        rating=derive_rating(rating),
        submitted_at=submitted_at,
        metadata={
            "place_id": raw.place_id,
            **_unpromoted(raw, {"author_name", "rating", "text", "time"}),
        },
        raw=raw.payload(),
    )


def normalize_business_review(raw: RawBusinessReview) -> NormalizedReview:
    review_id = (raw.name or "").rstrip("/").rsplit("/", 1)[-1] or raw.review_id
    if not review_id:
        raise NormalizationError("review has neither name nor reviewId")

    rating = None
    if raw.star_rating is not None and raw.star_rating != "STAR_RATING_UNSPECIFIED":
        if raw.star_rating not in STAR_RATINGS:
            raise NormalizationError(f"unknown star rating: {raw.star_rating!r}")
        rating = STAR_RATINGS[raw.star_rating] * GOOGLE_SCALE

    reviewer = raw.reviewer
    if reviewer.is_anonymous:
        guest_name = ANONYMOUS_REVIEWER
    else:
        guest_name = sanitize_name(reviewer.display_name)

    metadata: dict[str, Any] = {"location_name": raw.location_name}
    if raw.update_time is not None:
        metadata["update_time"] = raw.update_time
    if reviewer.profile_photo_url:
        metadata["profile_photo_url"] = reviewer.profile_photo_url
    if raw.review_reply is not None:
        metadata["reply"] = raw.review_reply.payload()
    metadata.update(
        _unpromoted(
            raw,
            {"name", "review_id", "reviewer", "star_rating", "comment", "create_time",
             "update_time", "review_reply"},
        )
    )

    return NormalizedReview(
        external_id=f"{ReviewSource.GOOGLE_BUSINESS.value}-{raw.location_name}-{review_id}",
        source=ReviewSource.GOOGLE_BUSINESS,
        guest_name=guest_name,
        comment=sanitize_comment(raw.comment),
        rating=derive_rating(rating),
        submitted_at=parse_timestamp(raw.create_time),
        metadata=metadata,
        raw=raw.payload(),
    )


def normalize_manual_review(raw: RawManualReview) -> NormalizedReview:
    submitted_at = parse_timestamp(raw.submitted_at)
    factor = 10 / raw.scale
    rating = None if raw.rating is None else raw.rating * factor
    scaled = {name: value * factor for name, value in raw.categories.items()}
    categories = {name: round_half_up(value, 1) for name, value in scaled.items()}

    external_id = (raw.external_id or "").strip()
    if not external_id:
        listing_ref = (raw.listing_ref or "").strip()
        if not listing_ref:
            raise NormalizationError("manual review needs an external_id or listing_ref")
        external_id = f"{ReviewSource.MANUAL.value}-{listing_ref}-{int(submitted_at.timestamp())}"

    return NormalizedReview(
        external_id=external_id,
        source=ReviewSource.MANUAL,
        guest_name=sanitize_name(raw.guest_name),
        comment=sanitize_comment(raw.comment),
        rating=derive_rating(rating, scaled),
        categories=categories,
        submitted_at=submitted_at,
        metadata={"listing_ref": raw.listing_ref, "scale": raw.scale},
        raw=raw.payload(),
    )


_NORMALIZERS = {
    RawPropertyReview: normalize_property_review,
    RawPlacesReview: normalize_places_review,
    RawBusinessReview: normalize_business_review,
    RawManualReview: normalize_manual_review,
}

_RAW_REVIEW = TypeAdapter(RawReview)


def parse_raw(item: Any) -> RawModel:
    """Validate one ``kind``-tagged provider item.

    Raises:
        NormalizationError: the item does not fit its raw review shape
    """
    if isinstance(item, RawModel):
        return item
    try:
        return _RAW_REVIEW.validate_python(item)
    except ValidationError as exc:
        raise NormalizationError(_describe(exc, item), item_ref=item_ref(item)) from exc


def _describe(exc: ValidationError, item: Any) -> str:
    first = exc.errors()[0]
    location = [str(part) for part in first["loc"]]
    if location and isinstance(item, dict) and location[0] == item.get("kind"):
        location = location[1:]
    return f"invalid {'.'.join(location) or 'item'}: {first['msg']}"


def normalize(raw: Any) -> NormalizedReview:
    """Normalize any raw review variant.

    Args:
        raw: A ``RawReview`` union member, or a provider dict tagged with ``kind``

    Returns:
        The canonical review

    Raises:
        NormalizationError: with ``item_ref`` set to the best provider reference
    """
    raw = parse_raw(raw)
    normalizer = _NORMALIZERS.get(type(raw))
    if normalizer is None:
        raise NormalizationError(f"unsupported raw review type: {type(raw).__name__}")
    try:
        return normalizer(raw)
    except NormalizationError as exc:
        exc.item_ref = exc.item_ref or item_ref(raw)
        raise
    except (ValueError, TypeError, KeyError) as exc:
        raise NormalizationError(str(exc), item_ref=item_ref(raw)) from exc


def item_ref(raw: Any) -> str:
    """Short provider-side reference used in import error reports."""
    if isinstance(raw, RawModel):
        kind, values = getattr(raw, "kind", None), raw.model_dump(by_alias=True)
    elif isinstance(raw, dict):
        kind, values = raw.get("kind"), raw
    else:
        return type(raw).__name__

    if kind == ReviewSource.PROPERTY_API.value:
        return f"{kind}:{values.get('id')}"
    if kind == ReviewSource.GOOGLE_PLACES.value:
        return f"{kind}:{values.get('place_id')}:{values.get('time')}"
    if kind == ReviewSource.GOOGLE_BUSINESS.value:
        return f"{kind}:{values.get('name') or values.get('reviewId')}"
    if kind == ReviewSource.MANUAL.value:
        return f"{kind}:{values.get('external_id') or values.get('listing_ref')}"
    return str(kind or type(raw).__name__)


def _unpromoted(raw: Any, promoted: set[str]) -> dict[str, Any]:
    # Extra provider fields have no alias; declared ones are dumped by alias.
    dumped = raw.model_dump(
        mode="json", exclude_unset=True, exclude=set(raw.context_fields) | promoted
    )
    return {key: value for key, value in dumped.items() if value is not None}
