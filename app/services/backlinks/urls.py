"""URL canonicalization used to compare hrefs against backlink targets."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from app.services.backlinks.errors import InvalidUrl

_ALLOWED_SCHEMES = {"http", "https"}
_DEFAULT_PORTS = {"http": 80, "https": 443}
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_QUERY_SAFE = _PATH_SAFE + "?"


@dataclass(frozen=True)
class CanonicalUrl:
    """Comparable form of an absolute http(s) URL.

    ``value`` drops the fragment and at most one trailing path slash, so
    ``https://a.com``, ``https://a.com/`` and ``https://a.com/#top`` compare
    equal.
    """

    value: str
    host: str

    def __str__(self) -> str:
        return self.value


def normalize(url: str) -> CanonicalUrl:
    """Canonicalize ``url`` or raise InvalidUrl."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrl("URL is empty.")
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as exc:
        raise InvalidUrl(f"Malformed URL: {url!r}") from exc

    scheme = parts.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES:
        raise InvalidUrl(f"Unsupported URL scheme: {url!r}")
    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidUrl(f"URL has no host: {url!r}")

    netloc = host if ":" not in host else f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    path = quote(parts.path, safe=_PATH_SAFE)
    if path.endswith("/"):
        path = path[:-1]
    query = quote(parts.query, safe=_QUERY_SAFE)
    rendered = urlunsplit((scheme, netloc, path, query, ""))
    return CanonicalUrl(value=rendered, host=host)


def resolve(href: str, base_url: str) -> CanonicalUrl:
    """Resolve a possibly relative ``href`` against ``base_url`` and normalize it."""
    if not isinstance(href, str) or not href.strip():
        raise InvalidUrl("href is empty.")
    try:
        absolute = urljoin(base_url, href.strip())
    except ValueError as exc:
        raise InvalidUrl(f"Unable to resolve href {href!r}") from exc
    return normalize(absolute)


def urls_match(left: str, right: str) -> bool:
    """Return True when both URLs share a canonical form; malformed URLs never match."""
    try:
        return normalize(left) == normalize(right)
    except InvalidUrl:
        return False


def ensure_valid(url: str, *, field: str) -> str:
    """Validate ``url`` for API/engine boundaries and return it stripped."""
    try:
        normalize(url)
    except InvalidUrl as exc:
        raise InvalidUrl(f"Invalid {field}: {url!r}") from exc
    return url.strip()
