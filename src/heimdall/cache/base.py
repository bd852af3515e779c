"""
Server Response Cache - Abstract base class for response stores.

A cache maps a request fingerprint ``(method, URI without fragment, body)``
to the fully materialized response that was fetched for it. The crawler
consults it before every fetch, so each fingerprint is fetched at most once
per run.

Design Pattern: Strategy Pattern
"""

import base64
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import structlog

from ..core.errors import HeimdallError
from ..core.uri import fetch_key
from ..http import HttpCall, HttpRequest


ErrorListener = Callable[[Exception], None]


class CacheError(HeimdallError):
    """Raised when the cache cannot be read or written"""
    pass


@dataclass(frozen=True)
class CacheLookup:
    """
    Result of a cache lookup.

    A miss is not an error: ``found`` is False and ``call`` is None, and the
    caller fetches through.
    """
    call: Optional[HttpCall] = None

    @property
    def found(self) -> bool:
        return self.call is not None

    @classmethod
    def hit(cls, call: HttpCall) -> "CacheLookup":
        return cls(call=call)

    @classmethod
    def miss(cls) -> "CacheLookup":
        return cls(call=None)


def _digest_pair(text: str) -> str:
    data = text.encode("utf-8")
    return f"{hashlib.md5(data).hexdigest()}_{hashlib.sha1(data).hexdigest()}"


def request_fingerprint(request: HttpRequest) -> str:
    """
    Compute the cache key of a request.

    The key is ``md5(uri)_sha1(uri)`` where ``uri`` is the fetch key
    ``{METHOD}_{canonical url}``; POST and PUT requests append
    ``_md5(b64)_sha1(b64)`` of the base64 encoded body. At most 195
    characters, which fits common filesystem name limits.

    Raises:
        InvalidURIError: If the request URL cannot be parsed
    """
    key = _digest_pair(fetch_key(request.method, request.url))

    if request.has_body:
        encoded = base64.b64encode(request.body or b"").decode("ascii")
        key = f"{key}_{_digest_pair(encoded)}"

    return key


class ServerResponseCache(ABC):
    """
    Abstract base class for response caches.

    Implementations must be safe to call from several workers; callers
    serialize access per URI with the cache lock service, so a store only
    has to keep distinct keys independent.

    Example:
        >>> cache = OnDiskHashServerResponseCache()
        >>> cache.initialise(settings, error_listener)
        >>> lookup = cache.load(request)
        >>> if not lookup.found:
        ...     cache.save(HttpCall(request, response))
        >>> cache.close()
    """

    name = "cache"

    def __init__(self):
        self.error_listener: Optional[ErrorListener] = None
        self.hits = 0
        self.misses = 0
        self.saves = 0

        self.logger = structlog.get_logger(__name__, cache=self.name)

    @abstractmethod
    def initialise(self, properties: Mapping[str, str], error_listener: Optional[ErrorListener] = None):
        """
        Create the backing store.

        Args:
            properties: Raw settings mapping
            error_listener: Callback for non-fatal errors

        Raises:
            ConfigurationError: If a required setting is missing
            CacheError: If the store cannot be created
        """
        pass

    @abstractmethod
    def load(self, request: HttpRequest) -> CacheLookup:
        """
        Look up the response stored for a request.

        Raises:
            CacheError: If the entry exists but cannot be read
        """
        pass

    @abstractmethod
    def save(self, call: HttpCall):
        """
        Store the response of a call under the request's fingerprint.

        Raises:
            CacheError: If the entry cannot be written
        """
        pass

    @abstractmethod
    def close(self):
        """Clear the store"""
        pass

    def __enter__(self) -> "ServerResponseCache":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def get_statistics(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dictionary with hit, miss and save counts
        """
        return {
            "hits": self.hits,
            "misses": self.misses,
            "saves": self.saves,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(hits={self.hits}, misses={self.misses}, saves={self.saves})"
