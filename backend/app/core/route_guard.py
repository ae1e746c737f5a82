"""Edge route guard.

Runs before any page renders and redirects between route groups:

- Protected page without a session cookie -> /login?redirect=<path>
- Auth-only page (login, signup, ...) with a session cookie -> /dashboard
- Anything else passes through.

Session presence is cookie existence only. The token is not validated
here; the gateway remains the authority and the client resolves the
session against it on load.

This is a raw ASGI middleware (not BaseHTTPMiddleware), so static asset
requests skip it with no overhead.
"""

from enum import Enum
from urllib.parse import urlencode

import structlog
from starlette.requests import HTTPConnection
from starlette.responses import RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from app.core.config import settings

logger = structlog.get_logger()

LOGIN_PATH = "/login"
DASHBOARD_PATH = "/dashboard"


class RouteGroup(Enum):
    """Authentication-based route groups."""

    PROTECTED = "protected"
    AUTH_ONLY = "auth_only"
    PUBLIC = "public"


# Checked in order; first match wins
ROUTE_PREFIXES: tuple[tuple[RouteGroup, tuple[str, ...]], ...] = (
    (
        RouteGroup.AUTH_ONLY,
        ("/login", "/signup", "/verify-email", "/forgot-password", "/reset-password"),
    ),
    (
        RouteGroup.PROTECTED,
        ("/dashboard", "/roadmap", "/diagnostics", "/account", "/profile"),
    ),
)

_SKIPPED_PREFIXES = ("/api", "/_next/static", "/_next/image", "/static", "/health")
_SKIPPED_PATHS = frozenset({"/favicon.ico"})
_IMAGE_SUFFIXES = (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp")


def _matches_prefix(path: str, prefix: str) -> bool:
    """Prefix match on path-segment boundaries ("/login" not "/loginx")."""
    return path == prefix or path.startswith(prefix + "/")


def classify_path(path: str) -> RouteGroup:
    """Assign a request path to exactly one route group.

    Args:
        path: Request path.

    Returns:
        The first matching group; unmatched paths are public.
    """
    for group, prefixes in ROUTE_PREFIXES:
        if any(_matches_prefix(path, prefix) for prefix in prefixes):
            return group
    return RouteGroup.PUBLIC


def is_guarded_path(path: str) -> bool:
    """Whether the guard runs for a path (static assets and APIs skip it)."""
    if path in _SKIPPED_PATHS:
        return False
    if any(_matches_prefix(path, prefix) for prefix in _SKIPPED_PREFIXES):
        return False
    return not path.lower().endswith(_IMAGE_SUFFIXES)


def _has_session_cookie(scope: Scope) -> bool:
    """Check for a non-empty access token cookie.

    Malformed unrelated cookies in the header are skipped.
    """
    return bool(HTTPConnection(scope).cookies.get(settings.auth_cookie_name))


class RouteGuardMiddleware:
    """Redirect between public, auth-only and protected pages."""

    def __init__(self, app: ASGIApp) -> None:
        """Initialize with the next ASGI application.

        Args:
            app: The next ASGI application in the middleware chain.
        """
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_guarded_path(scope["path"]):
            await self.app(scope, receive, send)
            return

        path = scope["path"]
        group = classify_path(path)
        authenticated = _has_session_cookie(scope)

        if group is RouteGroup.PROTECTED and not authenticated:
            target = f"{LOGIN_PATH}?{urlencode({'redirect': path})}"
            logger.info("Route guard redirect", path=path, group=group.value, to=LOGIN_PATH)
            await RedirectResponse(target, status_code=307)(scope, receive, send)
            return

        if group is RouteGroup.AUTH_ONLY and authenticated:
            logger.info(
                "Route guard redirect", path=path, group=group.value, to=DASHBOARD_PATH
            )
            await RedirectResponse(DASHBOARD_PATH, status_code=307)(scope, receive, send)
            return

        await self.app(scope, receive, send)
