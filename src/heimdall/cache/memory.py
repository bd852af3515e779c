"""
In-memory cache - Dictionary backed response store.

Keeps the same fingerprint -> response contract as the on-disk cache; useful
for dry runs and tests where nothing should touch the file system.
"""

import copy
import threading
from typing import Dict, Mapping, Optional

from ..http import HttpCall, HttpRequest, HttpResponse
from .base import CacheLookup, ErrorListener, ServerResponseCache, request_fingerprint


class InMemoryServerResponseCache(ServerResponseCache):
    """Response cache held in a dictionary for the lifetime of the run"""

    name = "memory"

    def __init__(self):
        super().__init__()
        self._entries: Dict[str, HttpResponse] = {}
        self._lock = threading.Lock()

    def initialise(self, properties: Mapping[str, str], error_listener: Optional[ErrorListener] = None):
        self.error_listener = error_listener
        with self._lock:
            self._entries.clear()
        self.logger.info("cache_initialised")

    def load(self, request: HttpRequest) -> CacheLookup:
        key = request_fingerprint(request)

        with self._lock:
            response = self._entries.get(key)

        if response is None:
            self.misses += 1
            return CacheLookup.miss()

        self.hits += 1
        return CacheLookup.hit(HttpCall(request, copy.deepcopy(response)))

    def save(self, call: HttpCall):
        key = request_fingerprint(call.request)

        with self._lock:
            self._entries[key] = copy.deepcopy(call.response)

        self.saves += 1

    def close(self):
        with self._lock:
            self._entries.clear()
        self.logger.info("cache_closed", **self.get_statistics())

    def __len__(self) -> int:
        return len(self._entries)
