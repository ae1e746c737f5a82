"""Error classes.

One hierarchy serves both sides of the app: the server returns APIError
subclasses through the JSON error envelope, and the gateway client raises
them to callers (AuthRequiredError, HttpError and friends).

InvalidRequestError and InternalError are built by the app's exception
handlers only, to render framework errors in the same envelope.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class InvalidRequestError(APIError):
    """A page or callback request had malformed query parameters (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class InternalError(APIError):
    """Unexpected server error (500). The message is always generic."""

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


# =============================================================================
# Gateway client errors
# =============================================================================


class AuthRequiredError(APIError):
    """A gateway call needed a bearer token but none is stored (401)."""

    def __init__(self) -> None:
        super().__init__(
            code="AUTH_REQUIRED",
            message="Not authenticated. Please sign in.",
            status_code=401,
        )


class HttpError(APIError):
    """The gateway answered with a non-2xx status.

    Attributes:
        status: Gateway HTTP status, or None when no response was received.
        detail: Best-effort message from the JSON ``detail`` field, falling
            back to the HTTP reason phrase.
    """

    def __init__(self, status: int | None, detail: str) -> None:
        self.status = status
        self.detail = detail
        super().__init__(
            code="GATEWAY_ERROR",
            message=detail,
            status_code=status or 502,
        )


class GatewayUnavailableError(HttpError):
    """The gateway could not be reached (no status code)."""

    def __init__(self, detail: str) -> None:
        super().__init__(status=None, detail=detail)
        self.code = "GATEWAY_UNAVAILABLE"


class GatewayContractError(HttpError):
    """A 2xx gateway body did not match the expected shape.

    Security: ``details`` carries validation locations only, never the body.
    """

    def __init__(self, endpoint: str, details: list[dict] | None = None) -> None:
        super().__init__(
            status=502,
            detail=f"Unexpected response from gateway endpoint {endpoint}",
        )
        self.code = "GATEWAY_CONTRACT_ERROR"
        self.details = details


class ValidationFailure(APIError):
    """User-correctable input problem, shown inline (422).

    Covers diagnostic answers the gateway judged insufficient as well as
    local form checks (password mismatch, unknown question).
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_FAILURE",
            message=message,
            status_code=422,
            details=details,
        )


class OAuthFailure(APIError):
    """OAuth initiation or code exchange failed (400)."""

    def __init__(self, message: str = "OAuth authentication failed") -> None:
        super().__init__(
            code="OAUTH_FAILED",
            message=message,
            status_code=400,
        )


def is_infrastructure_failure(exc: BaseException) -> bool:
    """Tell infrastructure faults apart from user-correctable ones.

    HTTP 500+ and missing status codes are infrastructure failures, as is
    anything that is not an APIError at all. Everything else (4xx,
    ValidationFailure, AuthRequiredError) is shown to the user inline.

    Args:
        exc: The exception raised by a gateway call.

    Returns:
        True when the user should be sent to the generic error page.
    """
    if isinstance(exc, HttpError):
        return exc.status is None or exc.status >= 500
    return not isinstance(exc, APIError)
