"""HTTP client for the API gateway.

All business logic lives behind the gateway. This module only attaches
credentials and normalizes failures into one error shape:

- No stored token for an authenticated call -> AuthRequiredError
- Non-2xx response -> HttpError(status, detail)
- Transport failure -> GatewayUnavailableError (status None)

It does not retry or refresh. Retry-once-on-401 lives in the auth session
manager so the policy is defined in one place.
"""

from collections.abc import AsyncGenerator
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import (
    AuthRequiredError,
    GatewayContractError,
    GatewayUnavailableError,
    HttpError,
)
from app.core.token_store import TokenStore


def _extract_detail(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response.

    Uses the JSON ``detail`` field when present, falls back to the HTTP
    reason phrase when the body is not JSON.

    Args:
        response: Non-2xx gateway response.

    Returns:
        Error detail string.
    """
    reason = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return reason

    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, list) and detail:
        # FastAPI-style validation errors: [{"loc": ..., "msg": ...}]
        first = detail[0]
        if isinstance(first, dict) and first.get("msg"):
            return str(first["msg"])
    return f"API request failed: {reason}"


class GatewayClient:
    """Thin wrapper over an httpx.AsyncClient pointed at the gateway.

    Usage:
        async with httpx.AsyncClient(base_url=settings.gateway_url) as http:
            gateway = GatewayClient(http, token_store)
            user = await gateway.request("/api/v1/auth/session")
    """

    def __init__(
        self, http: httpx.AsyncClient, token_store: TokenStore | None = None
    ) -> None:
        """Initialize the client.

        Args:
            http: HTTP client whose base_url is the gateway.
            token_store: Source of the bearer token. Server-side callers
                that only make unauthenticated calls pass None.
        """
        self._http = http
        self._token_store = token_store

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        json: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
        token: str | None = None,
    ) -> Any:
        """Call a gateway endpoint and return its decoded JSON body.

        Args:
            endpoint: Path beginning with /api/v1.
            method: HTTP method.
            json: Request body, serialized as JSON.
            params: Query parameters.
            headers: Extra headers; these override the defaults.
            authenticated: Attach the stored bearer token (required).
            token: Explicit bearer token, used instead of the stored one.

        Returns:
            Decoded JSON body, or None for an empty body.

        Raises:
            AuthRequiredError: Authenticated call with no token available.
            HttpError: Gateway returned a non-2xx status.
            GatewayUnavailableError: Gateway could not be reached.
        """
        request_headers = {"Content-Type": "application/json"}
        if authenticated:
            bearer = token or (
                self._token_store.get_access() if self._token_store else None
            )
            if not bearer:
                raise AuthRequiredError()
            request_headers["Authorization"] = f"Bearer {bearer}"
        if headers:
            request_headers.update(headers)

        try:
            response = await self._http.request(
                method,
                endpoint,
                json=json,
                params=params,
                headers=request_headers,
            )
        except httpx.TransportError as exc:
            raise GatewayUnavailableError(
                f"Unable to reach gateway: {type(exc).__name__}"
            ) from exc

        if not response.is_success:
            raise HttpError(response.status_code, _extract_detail(response))

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayContractError(endpoint) from exc


async def get_gateway_http() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Dependency that provides an HTTP client for the gateway.

    Used by server endpoints (OAuth code exchange). Overridden in tests
    with a MockTransport-backed client.
    """
    async with httpx.AsyncClient(base_url=settings.gateway_url) as client:
        yield client
