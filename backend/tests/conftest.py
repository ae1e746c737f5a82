import json
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.gateway_client import GatewayClient
from app.core.token_store import MemoryBackend, TokenStore
from app.services.gateway_api import GatewayApi
from app.services.navigation import RecordingNavigator

GATEWAY_BASE_URL = "http://gateway.test"
FRONTEND_ORIGIN = "http://localhost:3000"

# Fixed clock for token expiry tests
FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)

# Security: test-only signing key, never used outside tests
TEST_TOKEN_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow


def create_test_jwt(
    sub: str = "user-1",
    *,
    expires_at: datetime | None = None,
) -> str:
    """Create a signed JWT shaped like a gateway access token.

    Args:
        sub: Subject claim.
        expires_at: exp claim. Defaults to one hour after FIXED_NOW.

    Returns:
        Encoded JWT string.
    """
    payload = {
        "sub": sub,
        "exp": int((expires_at or FIXED_NOW + timedelta(hours=1)).timestamp()),
    }
    return jwt.encode(payload, TEST_TOKEN_SECRET, algorithm="HS256")


def gateway_user(
    user_id: str = "user-1",
    *,
    email: str = "a@b.com",
    email_verified: bool = True,
) -> dict[str, Any]:
    """Gateway user JSON."""
    return {"id": user_id, "email": email, "email_verified": email_verified}


def gateway_session(
    access_token: str = "access-1",
    refresh_token: str | None = "refresh-1",
    expires_in: int | None = 3600,
) -> dict[str, Any]:
    """Gateway session JSON."""
    session: dict[str, Any] = {"access_token": access_token}
    if refresh_token is not None:
        session["refresh_token"] = refresh_token
    if expires_in is not None:
        session["expires_in"] = expires_in
    return session


# =============================================================================
# Fake gateway
# =============================================================================


class FakeGateway:
    """Scripted stand-in for the API gateway, served via httpx.MockTransport.

    Responses queued for a route are returned in order; the last one repeats.
    Unscripted routes answer 404. Every request is recorded.

    Usage:
        fake.add("POST", "/api/v1/auth/signin", json={...})
        fake.add("GET", "/api/v1/auth/session", status=401, json={"detail": "..."})
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        *,
        status: int = 200,
        json: Any = None,
        content: bytes | None = None,
        error: Exception | None = None,
    ) -> None:
        """Queue a response (or a transport error) for a route."""
        entry = error if error is not None else (status, json, content)
        self._routes.setdefault((method.upper(), path), []).append(entry)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        """Requests received for a route."""
        return [
            r for r in self.requests if r.method == method.upper() and r.url.path == path
        ]

    def body(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"detail": "Not Found"})
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        status, body, content = entry
        if content is not None:
            return httpx.Response(status, content=content)
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def gateway_http(fake_gateway: FakeGateway) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client pointed at the fake gateway."""
    async with httpx.AsyncClient(
        transport=fake_gateway.transport(), base_url=GATEWAY_BASE_URL
    ) as client:
        yield client


@pytest.fixture
def token_store() -> TokenStore:
    """Token store over two in-memory backends with a fixed clock."""
    return TokenStore(MemoryBackend(), MemoryBackend(), now=lambda: FIXED_NOW)


@pytest.fixture
def gateway_api(gateway_http: httpx.AsyncClient, token_store: TokenStore) -> GatewayApi:
    return GatewayApi(GatewayClient(gateway_http, token_store))


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator(f"{FRONTEND_ORIGIN}/")


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(fake_gateway: FakeGateway) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for the ASGI app, with the gateway faked.

    Yields:
        AsyncClient that does not follow redirects.
    """
    from app.core.gateway_client import get_gateway_http
    from app.main import app

    async def override_get_gateway_http() -> AsyncGenerator[httpx.AsyncClient, None]:
        async with httpx.AsyncClient(
            transport=fake_gateway.transport(), base_url=GATEWAY_BASE_URL
        ) as gateway:
            yield gateway

    app.dependency_overrides[get_gateway_http] = override_get_gateway_http

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    from app.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original_enabled
