# scope.py

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidLocation

_WRAPPING_CHARS = "\"'“”„«»<>()[]{}"
_DEFAULT_PORTS = {"http": 80, "https": 443}
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_url(raw: str) -> str:
    """
    Turns user input into an absolute http(s) URL.

    Only the first whitespace-separated token is used. Quotes and brackets
    around it are dropped, and `//host` or `www.host` get an https scheme.
    """
    token = (raw or "").split()
    if not token:
        raise InvalidLocation("Invalid URL: empty")
    s = _CONTROL_CHARS.sub("", token[0]).strip(_WRAPPING_CHARS)

    if s.startswith("//"):
        s = "https:" + s
    elif s.lower().startswith("www."):
        s = "https://" + s
    if not re.match(r"^https?://", s, re.IGNORECASE):
        # "mailto:x" has a scheme, "localhost:3000" has a port
        if re.match(r"^[a-z][a-z0-9+.-]*:(?!\d)", s, re.IGNORECASE) and "://" not in s:
            raise InvalidLocation(f"Invalid URL: unsupported scheme in {raw!r}")
        s = "https://" + s.split("://", 1)[-1].lstrip("/")

    try:
        canonical = canonicalize(s)
    except ValueError as e:
        raise InvalidLocation(f"Invalid URL: {e}")
    if not urlsplit(canonical).hostname:
        raise InvalidLocation(f"Invalid URL: no host in {raw!r}")
    return canonical


def canonicalize(url: str) -> str:
    """
    Lowercases scheme and host, drops default ports and the fragment.
    Path and query are kept as-is; an empty path becomes `/`.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    netloc = host if port is None or port == _DEFAULT_PORTS.get(scheme) else f"{host}:{port}"
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def origin(url: str) -> str:
    """scheme://host[:port] of a URL."""
    parts = urlsplit(canonicalize(url))
    return f"{parts.scheme}://{parts.netloc}"


@dataclass(frozen=True)
class Scope:
    """A canonical URL prefix bounding what a crawl may follow."""

    prefix: str

    def __str__(self):
        return self.prefix

    def contains(self, location: str) -> bool:
        try:
            candidate = canonicalize(location)
        except ValueError:
            return False
        if not candidate.startswith(("http://", "https://")):
            return False
        candidate = _strip_slash(candidate)
        return candidate.startswith(self.prefix) and _on_boundary(
            candidate, self.prefix
        )


def _strip_slash(url: str) -> str:
    return url.rstrip("/")


def _on_boundary(candidate: str, prefix: str) -> bool:
    # "https://a.com/docs" must not admit "https://a.com/docsearch",
    # but a prefix that itself ends mid-segment (".../v1-") is taken literally.
    if len(candidate) == len(prefix):
        return True
    if prefix.endswith(("/", "-", "_", ".", "=", "?", "&")):
        return True
    return candidate[len(prefix)] in "/?#"


def resolve_scope(start: str, scope: Optional[str] = None) -> Scope:
    """
    Canonical scope for a crawl starting at `start`.

    Defaults to scheme + host of the start location.
    """
    start_url = sanitize_url(start)
    if scope and scope.strip():
        prefix = sanitize_url(scope)
    else:
        prefix = origin(start_url)
    return Scope(_strip_slash(prefix))
