"""
On-disk hash cache - One JSON file per request fingerprint.

File names are the request fingerprint (see ``request_fingerprint``), so
names stay short regardless of URL length. Each file holds the serialized
response with its body in base64.
"""

import json
import os
import shutil
from pathlib import Path
from typing import Mapping, Optional

from ..core.config import parse_bool, require
from ..http import HttpCall, HttpRequest, HttpResponse
from .base import CacheError, CacheLookup, ErrorListener, ServerResponseCache, request_fingerprint


class OnDiskHashServerResponseCache(ServerResponseCache):
    """
    File-system backed response cache.

    Settings:
        SERVER_RESPONSE_CACHE__CACHE_PATH: Directory holding the entries (required)
        SERVER_RESPONSE_CACHE__CLEAR_ON_INIT: Clear existing entries on open (default true)
    """

    name = "disk"

    def __init__(self):
        super().__init__()
        self.cache_path: Optional[Path] = None

    def initialise(self, properties: Mapping[str, str], error_listener: Optional[ErrorListener] = None):
        self.error_listener = error_listener
        self.cache_path = Path(require(properties, "SERVER_RESPONSE_CACHE__CACHE_PATH"))
        clear_on_init = parse_bool(properties.get("SERVER_RESPONSE_CACHE__CLEAR_ON_INIT"), default=True)

        try:
            if self.cache_path.exists() and clear_on_init:
                self._clear()
            self.cache_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create cache directory {self.cache_path}: {e}") from e

        self.logger.info("cache_initialised", path=str(self.cache_path), cleared=clear_on_init)

    def _entry_path(self, request: HttpRequest) -> Path:
        if self.cache_path is None:
            raise CacheError("Cache used before initialise()")
        return self.cache_path / request_fingerprint(request)

    def load(self, request: HttpRequest) -> CacheLookup:
        path = self._entry_path(request)

        if not path.exists():
            self.misses += 1
            return CacheLookup.miss()

        try:
            with open(path, "r", encoding="utf-8") as f:
                response = HttpResponse.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            raise CacheError(f"Cannot read cache entry for {request.url}: {e}") from e

        self.hits += 1
        return CacheLookup.hit(HttpCall(request, response))

    def save(self, call: HttpCall):
        path = self._entry_path(call.request)
        staging = path.with_name(path.name + ".tmp")

        try:
            with open(staging, "w", encoding="utf-8") as f:
                json.dump(call.response.to_dict(), f)
            os.replace(staging, path)
        except OSError as e:
            raise CacheError(f"Cannot write cache entry for {call.request.url}: {e}") from e

        self.saves += 1
        self.logger.debug("cache_saved", url=call.request.url, entry=path.name)

    def close(self):
        if self.cache_path is None:
            return

        try:
            self._clear()
        except OSError as e:
            self.logger.warning("cache_clear_failed", path=str(self.cache_path), error=str(e))
            if self.error_listener:
                self.error_listener(e)
            return

        self.logger.info("cache_closed", path=str(self.cache_path), **self.get_statistics())

    def _clear(self):
        if self.cache_path is not None and self.cache_path.exists():
            shutil.rmtree(self.cache_path)
