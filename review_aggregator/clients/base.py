"""Shared HTTP plumbing for review source clients."""

import time
import uuid
from typing import Any

import httpx

from review_aggregator.clients.errors import (
    ProviderError,
    ProviderErrorKind,
    error_from_response,
    unreachable,
)
from review_aggregator.clients.throttle import RequestThrottle
from review_aggregator.telemetry.logger import get_logger


def tag_item(item: Any, **context: Any) -> Any:
    """Provider item with client context added; non-objects pass through untouched."""
    if isinstance(item, dict):
        return {**item, **context}
    return item


class SourceClient:
    """Base class for provider clients.

    Every request is throttled, carries a fixed timeout and maps failures onto
    ``ProviderError``. There is no automatic retry here; token-based clients
    replay once on 401 through ``with_auth_retry``.
    """

    provider_name = "provider"
    default_base_url = ""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float = 10.0,
        min_delay_seconds: float = 1.0,
        user_agent: str = "ListingReviews-Dashboard/1.0",
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Provider API root; defaults to the provider's public URL
            timeout_seconds: Per-request timeout
            min_delay_seconds: Minimum spacing between requests
            user_agent: User-Agent header value
            http_client: Preconfigured client (tests inject a mock transport)
        """
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = httpx.Timeout(timeout_seconds)
        self.throttle = RequestThrottle(min_delay_seconds)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Accept": "application/json", "User-Agent": user_agent},
        )
        self.logger = get_logger(f"{self.provider_name}_client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        correlation_id = str(uuid.uuid4())
        url = path if path.startswith("http") else f"{self.base_url}{path}"

        await self.throttle.acquire()
        start_time = time.time()

        try:
            response = await self._http.request(
                method, url, params=params, headers=headers, data=data, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            self.logger.error(
                "Provider unreachable",
                extra={
                    "correlation_id": correlation_id,
                    "provider": self.provider_name,
                    "path": path,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "duration_seconds": time.time() - start_time,
                    "operation": "provider_request_unreachable",
                },
            )
            raise unreachable(exc, provider=self.provider_name) from exc

        duration = time.time() - start_time
        if response.status_code >= 400:
            error = error_from_response(response, provider=self.provider_name)
            self.logger.warning(
                "Provider request failed",
                extra={
                    "correlation_id": correlation_id,
                    "provider": self.provider_name,
                    "path": path,
                    "status_code": response.status_code,
                    "kind": error.kind.value,
                    "duration_seconds": duration,
                    "operation": "provider_request_failed",
                },
            )
            raise error

        self.logger.info(
            "Provider request completed",
            extra={
                "correlation_id": correlation_id,
                "provider": self.provider_name,
                "path": path,
                "status_code": response.status_code,
                "duration_seconds": duration,
                "operation": "provider_request_complete",
            },
        )
        return response

    async def _get_json(self, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request("GET", path, **kwargs)
        return self._json_body(response)

    def _json_body(self, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                "response is not valid JSON",
                kind=ProviderErrorKind.UNKNOWN,
                provider=self.provider_name,
                http_status=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ProviderError(
                "response must be a JSON object",
                kind=ProviderErrorKind.UNKNOWN,
                provider=self.provider_name,
                http_status=response.status_code,
            )
        return body

    def usage_stats(self) -> dict[str, Any]:
        return {
            "provider": self.provider_name,
            "request_count": self.throttle.request_count,
            "last_request_time": self.throttle.last_request_time,
            "min_delay_seconds": self.throttle.min_delay,
        }
