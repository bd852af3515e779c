"""
Cache module - Server response caches.

Caches are selected by name with the SERVER_RESPONSE_CACHE setting:
- disk: OnDiskHashServerResponseCache (default)
- memory: InMemoryServerResponseCache
"""

from typing import Dict, Type

from ..core.errors import ConfigurationError
from .base import CacheError, CacheLookup, ServerResponseCache, request_fingerprint
from .disk import OnDiskHashServerResponseCache
from .memory import InMemoryServerResponseCache


CACHES: Dict[str, Type[ServerResponseCache]] = {
    "disk": OnDiskHashServerResponseCache,
    "memory": InMemoryServerResponseCache,
}


def create_cache(selector: str) -> ServerResponseCache:
    """
    Instantiate a cache by registry name or class name.

    Fully qualified class names from older settings files
    (``heimdall.crawler.cache.disk.OnDiskHashServerResponseCache``) resolve
    through their last component.

    Raises:
        ConfigurationError: If the selector is unknown
    """
    name = selector.strip()
    if name.lower() in CACHES:
        return CACHES[name.lower()]()

    class_name = name.rsplit(".", 1)[-1]
    for cache_class in CACHES.values():
        if cache_class.__name__ == class_name:
            return cache_class()

    raise ConfigurationError(f"Unknown server response cache [{selector}]")


__all__ = [
    "CACHES",
    "create_cache",
    # Base classes
    "ServerResponseCache",
    "CacheLookup",
    "request_fingerprint",
    # Exceptions
    "CacheError",
    # Caches
    "OnDiskHashServerResponseCache",
    "InMemoryServerResponseCache",
]
