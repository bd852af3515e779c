"""
Core module - URI handling, locking, configuration and crawl policy.

The crawler instance lives in ``heimdall.core.crawler_instance``; it is not
imported here because it depends on the cache, recorder and crawler packages.
"""

from .errors import ConfigurationError, HeimdallError
from .uri import InvalidURIError, canonical, fetch_key, host_of, scheme_of
from .lock_service import KeyedLockService
from .config import CrawlOptions, Settings, load_properties, load_seed_list
from .policy import CrawlPolicy


__all__ = [
    # Errors
    "HeimdallError",
    "ConfigurationError",
    "InvalidURIError",
    # URIs
    "canonical",
    "fetch_key",
    "host_of",
    "scheme_of",
    # Locking
    "KeyedLockService",
    # Configuration
    "CrawlOptions",
    "Settings",
    "load_properties",
    "load_seed_list",
    "CrawlPolicy",
]
