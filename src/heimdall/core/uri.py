"""
URI Normalizer - Canonical URIs and fetch keys.

Every component that needs to decide whether two URLs refer to the same
resource goes through :func:`canonical`: the cache lock, the omission and
loaded sets, and the navigation check in the worker.
"""

from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import HeimdallError


# Characters an RFC 3986 parser rejects outright
_ILLEGAL_CHARACTERS = frozenset(' <>"{}|\\^`')


class InvalidURIError(HeimdallError):
    """Raised when a URL cannot be parsed"""

    def __init__(self, url: str, reason: str = "unparseable URI"):
        super().__init__(f"Invalid URI [{url}]: {reason}")
        self.url = url
        self.reason = reason


def canonical(url: str) -> str:
    """
    Re-emit a URL from its scheme, authority, path and query.

    The fragment is dropped, the scheme and host are lower-cased and an empty
    path on a hierarchical http(s) URL becomes ``/`` (the form browsers put on
    the wire). The function is idempotent.

    Args:
        url: URL to normalize

    Returns:
        Canonical URL

    Raises:
        InvalidURIError: If the URL cannot be parsed
    """
    if url is None:
        raise InvalidURIError(str(url), "no URI given")

    for char in url:
        if char in _ILLEGAL_CHARACTERS or ord(char) < 0x20 or ord(char) == 0x7F:
            raise InvalidURIError(url, f"illegal character {char!r}")

    try:
        parts = urlsplit(url)
        # Accessing the port validates it
        parts.port
    except ValueError as e:
        raise InvalidURIError(url, str(e)) from e

    netloc = parts.netloc
    if netloc and "@" not in netloc:
        netloc = netloc.lower()

    path = parts.path
    if not path and netloc and parts.scheme in ("http", "https"):
        path = "/"

    return urlunsplit((parts.scheme, netloc, path, parts.query, ""))


def fetch_key(method: str, url: str) -> str:
    """
    Build the fetch key ``{METHOD}_{canonical(url)}``.

    Args:
        method: HTTP method
        url: Request URL

    Returns:
        Fetch key string
    """
    return f"{method.upper()}_{canonical(url)}"


def host_of(url: str) -> Optional[str]:
    """
    Get the host component of a URL.

    Returns:
        Lower-cased host, or None if the URL has no host or cannot be parsed
    """
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def scheme_of(url: str) -> str:
    """Get the lower-cased scheme of a URL (empty string if none)"""
    try:
        return urlsplit(url).scheme
    except ValueError:
        return ""
