"""Browser-visible page routes.

Presentation lives in the client. Each route returns a page descriptor so
the route surface (and the guard in front of it) can be exercised end to
end: which page, which route group, and any user-safe notice carried in
the ``error``/``message`` query parameters.
"""

from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request
from pydantic import BaseModel

from app.core.responses import DataResponse
from app.core.route_guard import classify_path

router = APIRouter()

# Path -> page name
PAGES: dict[str, str] = {
    "/": "home",
    "/about": "about",
    "/contact": "contact",
    "/login": "login",
    "/signup": "signup",
    "/forgot-password": "forgot-password",
    "/reset-password": "reset-password",
    "/verify-email": "verify-email",
    "/dashboard": "dashboard",
    "/diagnostics": "diagnostics",
    "/roadmap": "roadmap",
    "/account": "account",
    "/profile": "profile",
    "/error": "error",
}

# Pages that display error/message query parameters
_NOTICE_PAGES = frozenset({"/login", "/error"})

_MAX_NOTICE_LENGTH = 300


class PageNotice(BaseModel):
    """Failure display carried in the query string."""

    error: str | None = None
    message: str | None = None


class PageView(BaseModel):
    """Descriptor for a rendered page."""

    page: str
    path: str
    group: str
    notice: PageNotice | None = None


def _read_notice(request: Request) -> PageNotice | None:
    error = request.query_params.get("error")
    message = request.query_params.get("message")
    if not error and not message:
        return None
    # Plain text only, clipped; the client renders it as text
    return PageNotice(
        error=error[:_MAX_NOTICE_LENGTH] if error else None,
        message=message[:_MAX_NOTICE_LENGTH] if message else None,
    )


def _make_endpoint(
    path: str, page: str
) -> Callable[[Request], Awaitable[DataResponse[PageView]]]:
    async def render_page(request: Request) -> DataResponse[PageView]:
        notice = _read_notice(request) if path in _NOTICE_PAGES else None
        return DataResponse(
            data=PageView(
                page=page,
                path=path,
                group=classify_path(path).value,
                notice=notice,
            )
        )

    render_page.__name__ = f"page_{page.replace('-', '_')}"
    return render_page


for _path, _page in PAGES.items():
    router.add_api_route(
        _path,
        _make_endpoint(_path, _page),
        methods=["GET"],
        response_model=DataResponse[PageView],
    )
