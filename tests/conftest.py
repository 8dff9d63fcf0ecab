"""Shared fixtures."""

import pytest

from review_aggregator.cache.review_cache import MemoryCacheStore, ReviewCache
from review_aggregator.storage.memory import InMemoryReviewRepository


@pytest.fixture
def repository():
    return InMemoryReviewRepository()


@pytest.fixture
def cache_store():
    return MemoryCacheStore()


@pytest.fixture
def cache(cache_store):
    return ReviewCache(cache_store, ttl_seconds=300, prefix="reviews")
