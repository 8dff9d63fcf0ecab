"""Core exception types shared by normalization, storage and ingestion."""


class NormalizationError(ValueError):
    """A single raw item could not be mapped to the canonical review schema."""

    def __init__(self, message: str, item_ref: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_ref = item_ref


class PersistenceError(Exception):
    """Storage failure surfaced to the caller as-is."""


class ReviewNotFoundError(PersistenceError):
    pass


class ListingNotFoundError(PersistenceError):
    pass


class DuplicateReviewError(PersistenceError):
    """Another writer stored a review with the same external id first."""


class SlugConflictError(PersistenceError):
    pass


class DuplicateListingError(PersistenceError):
    """A listing with the same external id already exists."""


class CacheWriteError(Exception):
    """Raised by cache stores; the cache layer logs and swallows it."""


class InvalidLocatorError(ValueError):
    """The source/locator pair given to an import cannot be used."""


class SourceUnavailableError(RuntimeError):
    """The requested source has no configured client."""
