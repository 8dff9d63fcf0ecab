"""Listing creation with unique, URL-safe slugs."""

import re

from review_aggregator.core.errors import PersistenceError, SlugConflictError
from review_aggregator.core.locks import KeyedLock
from review_aggregator.models.reviews import Listing
from review_aggregator.storage.repository import ReviewRepository
from review_aggregator.telemetry.logger import get_logger

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
FALLBACK_SLUG = "listing"


def slugify(name: str) -> str:
    """``"New Listing!"`` -> ``"new-listing"``; empty results become ``"listing"``."""
    slug = _NON_ALNUM.sub("-", (name or "").lower()).strip("-")
    return slug or FALLBACK_SLUG


class SlugResolver:
    """Allocates slugs by probing ``base``, ``base-1``, ``base-2``...

    Callers in this process are serialized per base slug. Another process can
    still win the race, in which case the storage unique constraint raises
    ``SlugConflictError`` and probing restarts, a bounded number of times.
    """

    def __init__(self, repository: ReviewRepository, max_conflict_retries: int = 5):
        self.repository = repository
        self.max_conflict_retries = max_conflict_retries
        self._locks = KeyedLock()
        self._external_locks = KeyedLock()
        self.logger = get_logger("slug_resolver")

    async def next_free_slug(self, base: str) -> str:
        candidate = base
        suffix = 0
        while await self.repository.find_listing_by_slug(candidate) is not None:
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    async def create_listing(self, external_id: str, name: str) -> Listing:
        """Insert a new listing with the first free slug derived from ``name``.

        Raises:
            SlugConflictError: every retry lost a race with another writer
            PersistenceError: any other storage failure
        """
        base = slugify(name)
        async with self._locks.hold(base):
            for attempt in range(self.max_conflict_retries + 1):
                slug = await self.next_free_slug(base)
                try:
                    listing = await self.repository.insert_listing(
                        Listing(external_id=external_id, name=name, slug=slug)
                    )
                except SlugConflictError:
                    self.logger.warning(
                        "Slug taken concurrently, probing again",
                        extra={"slug": slug, "attempt": attempt + 1, "operation": "slug_conflict"},
                    )
                    continue
                self.logger.info(
                    "Listing created",
                    extra={
                        "listing_id": listing.id,
                        "external_id": external_id,
                        "slug": slug,
                        "operation": "listing_create",
                    },
                )
                return listing
        raise SlugConflictError(
            f"no free slug for {base!r} after {self.max_conflict_retries} retries"
        )

    async def resolve_listing(self, external_id: str, name: str) -> Listing:
        """Existing listing for ``external_id``, created if missing."""
        async with self._external_locks.hold(external_id):
            listing = await self.repository.find_listing_by_external_id(external_id)
            if listing is not None:
                return listing
            try:
                return await self.create_listing(external_id, name)
            except PersistenceError:
                # Another process created the same listing.
                listing = await self.repository.find_listing_by_external_id(external_id)
                if listing is None:
                    raise
                return listing
