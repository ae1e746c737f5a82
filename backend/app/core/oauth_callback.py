"""OAuth callback parameter extraction.

Identity providers return to the callback with ``code`` (or ``error`` and
``error_description``) in the query string. Some place them after ``#``
instead, and a misconfigured redirect URI can embed a fragment inside a
query value. Both are scanned as a fallback.

Browsers never send the fragment to the server, so the fragment scan only
applies when the full URL reaches us (proxies that forward it, or a client
that re-posts ``window.location.href``).
"""

from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit


@dataclass(frozen=True)
class CallbackParams:
    """Parameters the callback acts on."""

    code: str | None = None
    error: str | None = None
    error_description: str | None = None


def _first(values: dict[str, list[str]], key: str) -> str | None:
    for value in values.get(key, []):
        if value:
            return value
    return None


def _fragments(url: str) -> list[str]:
    """Collect fragment-style parameter strings from a URL.

    Includes the URL fragment itself and any ``#...`` tail embedded in a
    query value (e.g. ``?next=/x#code=abc``).
    """
    parts = urlsplit(url)
    found: list[str] = []
    if parts.fragment:
        found.append(parts.fragment)
    for values in parse_qs(parts.query, keep_blank_values=True).values():
        for value in values:
            if "#" in value:
                found.append(value.split("#", 1)[1])
    return found


def extract_callback_params(url: str) -> CallbackParams:
    """Read code and error parameters from a callback URL.

    Query parameters win; fragments are scanned only for what the query
    lacks.

    Args:
        url: Full callback URL, fragment included when available.

    Returns:
        CallbackParams with whatever was found.
    """
    query = parse_qs(urlsplit(url).query, keep_blank_values=True)
    code = _first(query, "code")
    error = _first(query, "error")
    description = _first(query, "error_description")

    for fragment in _fragments(url):
        params = parse_qs(fragment.lstrip("?"), keep_blank_values=True)
        code = code or _first(params, "code")
        error = error or _first(params, "error")
        description = description or _first(params, "error_description")

    return CallbackParams(code=code, error=error, error_description=description)
