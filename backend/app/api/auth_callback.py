"""OAuth callback endpoint.

The identity provider redirects here after consent. The authorization
code is exchanged for a session through the gateway, then the browser is
sent on with the tokens attached as query parameters for the client to
pick up on its next load:

- verified email   -> /dashboard?token=...&refresh_token=...&user_id=...
  (session cookies are set too, so the route guard lets it through)
- unverified email -> /verify-email?token=...

Every failure redirects to /login with an ``error`` code and a user-safe
``message``. Technical detail is only logged.
"""

from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from starlette.responses import Response

from app.api.deps import Gateway
from app.core.config import settings
from app.core.error_messages import describe_error
from app.core.errors import HttpError
from app.core.oauth_callback import extract_callback_params
from app.core.rate_limiting import limiter
from app.core.token_store import set_session_cookies

logger = structlog.get_logger()

router = APIRouter()

NO_CODE_MESSAGE = "No authorization code received. Please try signing in again."
EXCHANGE_FAILED_MESSAGE = "We could not complete your sign in. Please try again."
NO_SESSION_MESSAGE = "Sign in did not return a session. Please try again."
OAUTH_FAILED_MESSAGE = "Sign in is unavailable right now. Please try again later."


def _frontend_url(path: str, params: dict[str, str]) -> str:
    base = settings.frontend_url.rstrip("/")
    return f"{base}{path}?{urlencode(params)}"


def _login_redirect(error: str, message: str) -> RedirectResponse:
    return RedirectResponse(
        _frontend_url("/login", {"error": error, "message": message}),
        status_code=307,
    )


# ===================================================================
# GET /auth/callback - OAuth Callback
# ===================================================================


@router.get("/auth/callback")
@limiter.limit(lambda: settings.rate_limit_oauth_callback)
async def oauth_callback(request: Request, gateway: Gateway) -> Response:
    """Exchange the provider's authorization code for a session.

    Rate limit: settings.rate_limit_oauth_callback per IP.
    """
    url = str(request.url)
    params = extract_callback_params(url)
    log = logger.bind(path=request.url.path, has_query=bool(request.url.query))

    if params.error:
        log.warning(
            "OAuth provider returned an error",
            error=params.error,
            error_description=params.error_description,
        )
        info = describe_error(params.error_description or params.error, "oauth")
        return _login_redirect("oauth_error", info.user_message)

    if not params.code:
        # Usually a redirect URI mismatch at the identity provider
        log.warning(
            "OAuth callback without authorization code",
            query_keys=sorted(request.query_params.keys()),
        )
        return _login_redirect("no_code", NO_CODE_MESSAGE)

    try:
        result = await gateway.exchange_code(params.code)
    except HttpError as exc:
        if exc.status is not None and exc.status < 500:
            log.warning("OAuth code exchange rejected", status=exc.status, detail=exc.detail)
            return _login_redirect("exchange_failed", EXCHANGE_FAILED_MESSAGE)
        log.error(
            "OAuth code exchange failed",
            status=exc.status,
            error_code=exc.code,
            detail=exc.detail,
        )
        return _login_redirect("oauth_failed", OAUTH_FAILED_MESSAGE)

    if result.session is None or not result.session.access_token:
        log.warning(
            "OAuth exchange returned no access token",
            has_user=result.user is not None,
        )
        return _login_redirect("no_session", NO_SESSION_MESSAGE)

    verified = bool(result.user and result.user.email_verified)
    handoff = {"token": result.session.access_token}
    if result.session.refresh_token:
        handoff["refresh_token"] = result.session.refresh_token
    if result.user is not None:
        handoff["user_id"] = result.user.id

    target = "/dashboard" if verified else "/verify-email"
    log.info(
        "OAuth sign in complete",
        user_id=result.user.id if result.user else None,
        email_verified=verified,
        redirect=target,
    )
    response = RedirectResponse(_frontend_url(target, handoff), status_code=307)
    if verified:
        # /verify-email is auth-only; a cookie there would bounce to /dashboard
        set_session_cookies(response, result.session)
    return response
