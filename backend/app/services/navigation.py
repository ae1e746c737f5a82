"""Browser navigation as an injectable collaborator.

The session manager and diagnostic controller never touch a real browser.
They call a Navigator: ``assign`` for a full-page redirect, ``replace``
for a history replace that does not trigger a new navigation.
"""

from typing import Protocol
from urllib.parse import urljoin, urlsplit

from app.core.config import settings

DEFAULT_AFTER_LOGIN_PATH = "/dashboard"


class Navigator(Protocol):
    """Browser location operations used by client services."""

    @property
    def current_url(self) -> str: ...

    def assign(self, url: str) -> None: ...

    def replace(self, url: str) -> None: ...


class RecordingNavigator:
    """Navigator that records every navigation instead of performing it.

    Used by non-browser clients and tests. ``history`` lists every URL the
    browser would have shown, in order; ``redirects`` lists only full-page
    navigations.
    """

    def __init__(self, url: str = settings.frontend_url) -> None:
        self._current_url = url
        self.history: list[str] = [url]
        self.redirects: list[str] = []

    @property
    def current_url(self) -> str:
        return self._current_url

    def assign(self, url: str) -> None:
        target = urljoin(self._current_url, url)
        self._current_url = target
        self.history.append(target)
        self.redirects.append(target)

    def replace(self, url: str) -> None:
        target = urljoin(self._current_url, url)
        self._current_url = target
        self.history[-1] = target


def safe_redirect_target(value: str | None) -> str:
    """Validate a post-login ``redirect`` parameter.

    Security: Only same-origin absolute paths are accepted. Protocol-relative
    ("//evil.com") and absolute URLs would turn login into an open redirect.

    Args:
        value: Raw ``redirect`` query parameter.

    Returns:
        The path if safe, otherwise the dashboard path.
    """
    if not value or not value.startswith("/") or value.startswith("//"):
        return DEFAULT_AFTER_LOGIN_PATH
    if "\\" in value or urlsplit(value).netloc:
        return DEFAULT_AFTER_LOGIN_PATH
    return value
