from enum import Enum
from typing import Any

import httpx


class ProviderErrorKind(str, Enum):
    ACCESS_DENIED = "access_denied"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


_STATUS_KINDS = {
    400: ProviderErrorKind.INVALID_REQUEST,
    401: ProviderErrorKind.UNAUTHORIZED,
    403: ProviderErrorKind.ACCESS_DENIED,
    404: ProviderErrorKind.NOT_FOUND,
    429: ProviderErrorKind.QUOTA_EXCEEDED,
}

# Places web service reports failures in the body of an HTTP 200.
_PLACES_STATUS_KINDS = {
    "REQUEST_DENIED": ProviderErrorKind.ACCESS_DENIED,
    "OVER_QUERY_LIMIT": ProviderErrorKind.QUOTA_EXCEEDED,
    "INVALID_REQUEST": ProviderErrorKind.INVALID_REQUEST,
    "NOT_FOUND": ProviderErrorKind.NOT_FOUND,
}


class ProviderError(Exception):
    def __init__(
        self,
        message: str,
        *,
        kind: ProviderErrorKind,
        provider: str,
        http_status: int | None = None,
        upstream_payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.provider = provider
        self.http_status = http_status
        self.upstream_payload = upstream_payload

    def __str__(self) -> str:
        status = f" (HTTP {self.http_status})" if self.http_status is not None else ""
        return f"{self.provider} {self.kind.value}{status}: {self.message}"


class ProviderAuthenticationError(ProviderError):
    """Bearer token could not be obtained or refreshed."""

    def __init__(self, message: str, *, provider: str, http_status: int | None = None) -> None:
        super().__init__(
            message, kind=ProviderErrorKind.UNAUTHORIZED, provider=provider, http_status=http_status
        )


def kind_for_status(status_code: int) -> ProviderErrorKind:
    return _STATUS_KINDS.get(status_code, ProviderErrorKind.UNKNOWN)


def kind_for_places_status(status: str) -> ProviderErrorKind:
    return _PLACES_STATUS_KINDS.get(status, ProviderErrorKind.UNKNOWN)


def error_from_response(response: httpx.Response, *, provider: str) -> ProviderError:
    body = _safe_json(response)
    return ProviderError(
        _extract_message(body) or response.reason_phrase or "request failed",
        kind=kind_for_status(response.status_code),
        provider=provider,
        http_status=response.status_code,
        upstream_payload=body,
    )


def unreachable(exc: httpx.HTTPError, *, provider: str) -> ProviderError:
    if isinstance(exc, httpx.TimeoutException):
        message = "request timed out"
    else:
        message = str(exc) or type(exc).__name__
    return ProviderError(message, kind=ProviderErrorKind.UNREACHABLE, provider=provider)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _extract_message(body: Any) -> str | None:
    if isinstance(body, str):
        return body[:500] or None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    for key in ("error_message", "message", "error_description"):
        if body.get(key):
            return str(body[key])
    if isinstance(error, str):
        return error
    return None
