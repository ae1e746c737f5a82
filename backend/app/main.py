"""FastAPI application entry point.

Serves the request-scoped side of the career coach client:
- Route guard redirects before any page renders
- OAuth callback (code exchange through the gateway)
- Page routes and health check
- Exception handlers for the error envelope
"""

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.router import router
from app.core.config import settings
from app.core.errors import APIError, InternalError, InvalidRequestError
from app.core.rate_limiting import limiter, rate_limit_exceeded_handler
from app.core.responses import ErrorDetail, ErrorResponse
from app.core.route_guard import RouteGuardMiddleware

logger = structlog.get_logger()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses.

    Headers added:
    - X-Frame-Options: Prevents clickjacking attacks
    - X-Content-Type-Options: Prevents MIME sniffing
    - Referrer-Policy: Controls referrer information leakage
    - Cache-Control: no-store on /auth/* (tokens travel in redirect URLs)
    - Strict-Transport-Security: Forces HTTPS (production only)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        # Clickjacking protection
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Control referrer information leakage; the callback redirect URL
        # carries tokens, so never send it cross-origin
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Never cache auth responses
        if request.url.path.startswith("/auth/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"

        # HSTS only in production (assumes HTTPS via reverse proxy)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError as the error envelope.

    Reaches here from page routes (NotFoundError) and from gateway errors
    that escape a server-side call, e.g. a GatewayContractError (502).

    Args:
        request: The incoming request.
        exc: The APIError that was raised.

    Returns:
        JSONResponse carrying the error's own status code.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                details=exc.details,
            )
        ).model_dump(),
    )


def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Reject malformed query parameters on page and callback routes.

    Args:
        request: The incoming request.
        exc: FastAPI's request validation error.

    Returns:
        400 envelope listing each offending parameter.
    """
    details = [
        {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
        for e in exc.errors()
    ]
    return api_error_handler(
        request, InvalidRequestError("Request validation failed", details=details)
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    The traceback is logged; the client only sees a generic 500 envelope.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        500 envelope with INTERNAL_ERROR.
    """
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))
    return api_error_handler(request, InternalError())


def create_app() -> FastAPI:
    """Build the app: middleware, exception handlers, pages and callback.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Career Coach Web",
        version="1.0.0",
        description="Career coaching client: route guard, OAuth callback and pages",
    )

    # Middleware order: Starlette uses LIFO, so the LAST added runs FIRST.
    # CORS runs first for preflight, then security headers (so guard
    # redirects get them too), then the route guard.
    app.add_middleware(RouteGuardMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Authorization"],
    )

    # Register exception handlers
    # Order matters: specific handlers first, then catch-all
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # Rate limiting (Security)
    app.state.limiter = limiter

    app.include_router(router)

    # Health check endpoint
    @app.get("/health")
    def health_check() -> dict:
        """Health check endpoint for monitoring.

        Returns:
            {"status": "healthy"} if service is running.
        """
        return {"status": "healthy"}

    return app


# Create the application instance
# Used by uvicorn: uvicorn app.main:app
app = create_app()
