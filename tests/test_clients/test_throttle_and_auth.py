"""Tests for request spacing and token handling."""

import asyncio
import time

import httpx
import pytest

from review_aggregator.clients.auth import (
    BearerToken,
    ClientCredentialsTokenProvider,
    RefreshTokenProvider,
)
from review_aggregator.clients.throttle import RequestThrottle


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestRequestThrottle:
    """Test minimum spacing between requests."""

    @pytest.mark.asyncio
    async def test_first_request_does_not_wait(self):
        clock = FakeClock()
        throttle = RequestThrottle(1.0, clock=clock, sleep=clock.sleep)

        assert await throttle.acquire() == 0.0
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_back_to_back_requests_are_spaced(self):
        clock = FakeClock()
        throttle = RequestThrottle(1.0, clock=clock, sleep=clock.sleep)

        await throttle.acquire()
        clock.now += 0.25
        waited = await throttle.acquire()

        assert waited == pytest.approx(0.75)
        assert throttle.request_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_queue(self):
        clock = FakeClock()
        throttle = RequestThrottle(1.0, clock=clock, sleep=clock.sleep)
        starts = []

        async def call():
            await throttle.acquire()
            starts.append(clock.now)

        await asyncio.gather(*(call() for _ in range(4)))

        gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
        assert all(gap >= 1.0 for gap in gaps)

    @pytest.mark.asyncio
    async def test_wall_clock_spacing(self):
        throttle = RequestThrottle(0.05)

        await throttle.acquire()
        first = time.monotonic()
        await throttle.acquire()

        assert time.monotonic() - first >= 0.045

    @pytest.mark.asyncio
    async def test_elapsed_delay_not_repeated(self):
        clock = FakeClock()
        throttle = RequestThrottle(1.0, clock=clock, sleep=clock.sleep)

        await throttle.acquire()
        clock.now += 5
        assert await throttle.acquire() == 0.0

    def test_reset(self):
        throttle = RequestThrottle(-1)
        throttle.request_count = 3
        throttle.last_request_time = 1.0
        throttle.reset()

        assert throttle.min_delay == 0.0
        assert throttle.request_count == 0
        assert throttle.last_request_time is None


class CountingProvider:
    def __init__(self):
        self.calls = 0

    async def fetch_token(self):
        self.calls += 1
        await asyncio.sleep(0)
        return f"token-{self.calls}"


class TestBearerToken:
    """Test token caching and refresh."""

    @pytest.mark.asyncio
    async def test_token_cached(self):
        provider = CountingProvider()
        token = BearerToken(provider, provider_name="property_api")

        assert await token.get() == "token-1"
        assert await token.get() == "token-1"
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_refresh_of_same_stale_token(self):
        provider = CountingProvider()
        token = BearerToken(provider, provider_name="property_api")
        stale = await token.get()

        results = await asyncio.gather(*(token.refresh(stale) for _ in range(3)))

        assert results == ["token-2", "token-2", "token-2"]
        assert provider.calls == 2


class TestTokenProviders:
    """Test OAuth grant bodies."""

    @pytest.mark.asyncio
    async def test_client_credentials_grant(self):
        bodies = []

        def handler(request):
            bodies.append(request.content.decode())
            return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})

        provider = ClientCredentialsTokenProvider(
            token_url="https://api.example.test/v1/accessTokens",
            client_id="61148",
            client_secret="secret",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert await provider.fetch_token() == "abc"
        assert "grant_type=client_credentials" in bodies[0]
        assert "scope=general" in bodies[0]
        assert "client_id=61148" in bodies[0]

    @pytest.mark.asyncio
    async def test_refresh_token_grant(self):
        bodies = []

        def handler(request):
            bodies.append(request.content.decode())
            return httpx.Response(200, json={"access_token": "ya29"})

        provider = RefreshTokenProvider(
            refresh_token="1//refresh",
            client_id="id",
            client_secret="secret",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert await provider.fetch_token() == "ya29"
        assert "grant_type=refresh_token" in bodies[0]
        assert provider.token_url == "https://oauth2.googleapis.com/token"

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        provider = RefreshTokenProvider(
            refresh_token="r",
            client_id="id",
            client_secret="secret",
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
            ),
        )

        with pytest.raises(ValueError):
            await provider.fetch_token()
