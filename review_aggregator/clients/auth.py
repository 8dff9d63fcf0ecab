"""Bearer tokens for providers that require OAuth."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

import httpx

from review_aggregator.clients.errors import ProviderAuthenticationError, ProviderError
from review_aggregator.telemetry.logger import get_logger

T = TypeVar("T")

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class TokenProvider(Protocol):
    async def fetch_token(self) -> str: ...


class OAuthTokenProvider:
    """Fetches access tokens from an OAuth2 token endpoint."""

    grant_type = "client_credentials"

    def __init__(
        self,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = httpx.Timeout(timeout_seconds)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout)

    def _grant(self) -> dict[str, Any]:
        return {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

    async def fetch_token(self) -> str:
        response = await self._http.post(
            self.token_url,
            data=self._grant(),
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError("token response must be a JSON object")
        token = str(body.get("access_token", "")).strip()
        if not token:
            raise ValueError("token response has no access_token")
        return token

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class ClientCredentialsTokenProvider(OAuthTokenProvider):
    """Property-management API: account id and key exchanged for a token."""

    def __init__(self, *, scope: str = "general", **kwargs: Any):
        super().__init__(**kwargs)
        self.scope = scope

    def _grant(self) -> dict[str, Any]:
        return {**super()._grant(), "scope": self.scope}


class RefreshTokenProvider(OAuthTokenProvider):
    """Google OAuth: a long-lived refresh token exchanged for access tokens."""

    grant_type = "refresh_token"

    def __init__(self, *, refresh_token: str, token_url: str = GOOGLE_TOKEN_URL, **kwargs: Any):
        super().__init__(token_url=token_url, **kwargs)
        self.refresh_token = refresh_token

    def _grant(self) -> dict[str, Any]:
        return {**super()._grant(), "refresh_token": self.refresh_token}


class BearerToken:
    """Current token of one client instance."""

    def __init__(self, provider: TokenProvider, *, provider_name: str):
        self._provider = provider
        self._provider_name = provider_name
        self._token: str | None = None
        self._lock = asyncio.Lock()
        self.logger = get_logger("bearer_token")

    @property
    def value(self) -> str | None:
        return self._token

    async def get(self) -> str:
        if self._token is None:
            return await self.refresh(stale=None)
        return self._token

    async def refresh(self, stale: str | None) -> str:
        """Fetch a new token unless another caller already replaced ``stale``."""
        async with self._lock:
            if self._token is not None and self._token != stale:
                return self._token
            self._token = None
            try:
                token = await self._provider.fetch_token()
            except (httpx.HTTPError, ValueError) as exc:
                self.logger.error(
                    "Token refresh failed",
                    extra={
                        "provider": self._provider_name,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "operation": "token_refresh_failed",
                    },
                )
                status = None
                if isinstance(exc, httpx.HTTPStatusError):
                    status = exc.response.status_code
                raise ProviderAuthenticationError(
                    f"token refresh failed: {exc}", provider=self._provider_name, http_status=status
                ) from exc
            self._token = token
            self.logger.info(
                "Token refreshed",
                extra={"provider": self._provider_name, "operation": "token_refresh"},
            )
            return token

    def clear(self) -> None:
        self._token = None


async def with_auth_retry(token: BearerToken, fn: Callable[[str], Awaitable[T]]) -> T:
    """Call ``fn(token)``; on 401 refresh once and replay once. Never loops."""
    current = await token.get()
    try:
        return await fn(current)
    except ProviderError as exc:
        if exc.http_status != 401:
            raise
    refreshed = await token.refresh(stale=current)
    return await fn(refreshed)
