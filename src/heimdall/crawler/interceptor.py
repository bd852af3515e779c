"""
Request Interceptor - Serves every browser request through the cache.

Installed on a worker's browser context with ``context.route("**/*", ...)``.
For each request:

1. Abort main-frame navigations the crawl policy does not allow (the
   document the worker is loading is always allowed)
2. Force ``Accept-Encoding: identity`` and apply the configured User-Agent
3. Lock the URI (canonical form) in the cache lock service
4. Return the cached response if there is one
5. Otherwise mark the URI loaded, fetch it (under the host's politeness
   lock when enabled), save it to the cache and record it
6. Mark the URI for omission when the fetch failed or the status is not
   2xx/3xx

Lock order is always cache[uri] -> politeness[host] -> fetch. Cache and
recorder I/O runs in a worker thread, off the shared event loop.
"""

import asyncio
import threading
from typing import Callable, List, Optional, Set, Tuple

import structlog
from playwright.async_api import Error as PlaywrightError, Request, Route

from ..cache import CacheError, ServerResponseCache
from ..core.config import CrawlOptions
from ..core.errors import HeimdallError
from ..core.lock_service import KeyedLockService
from ..core.policy import CrawlPolicy
from ..core.uri import InvalidURIError, canonical, host_of
from ..http import HttpCall, HttpRequest, HttpResponse
from ..recorder import CallRecorder, RecorderError


ErrorListener = Callable[[Exception], None]


class RequestFailedError(HeimdallError):
    """Raised when a request fails at the transport level (no response)"""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Request to {url} failed: {reason}")


def _session_key(url: str) -> str:
    try:
        return canonical(url)
    except InvalidURIError:
        return url


class SessionState:
    """
    Per-worker resource tracking shared with the interceptor.

    - Omission set: URIs whose fetch failed or returned a failure status
      since the last clear. The worker skips a page whose own document is
      in it.
    - Loaded set: URIs fetched from the network (not the cache) since the
      last clear. A navigation after a click is only followed when the new
      document was loaded.
    - Broken flag: set after a cache or recorder failure; the worker stops
      taking work.

    URIs are stored in canonical form.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._omitted: Set[str] = set()
        self._loaded: Set[str] = set()
        self.broken = False

    def omit(self, url: str):
        with self._lock:
            self._omitted.add(_session_key(url))

    def pop_omission(self, url: str) -> bool:
        """Check whether ``url`` is omitted, then clear the omission set"""
        with self._lock:
            omitted = _session_key(url) in self._omitted
            self._omitted.clear()
            return omitted

    def mark_loaded(self, url: str):
        with self._lock:
            self._loaded.add(_session_key(url))

    def was_loaded(self, url: str) -> bool:
        with self._lock:
            return _session_key(url) in self._loaded

    def clear_loaded(self):
        with self._lock:
            self._loaded.clear()

    def mark_broken(self):
        self.broken = True


class RequestInterceptor:
    """
    Cache-first request handler for one worker.

    Example:
        >>> interceptor = RequestInterceptor(options, cache, recorder, cache_locks, session)
        >>> await context.route("**/*", interceptor.handle_route)
    """

    def __init__(
        self,
        options: CrawlOptions,
        cache: ServerResponseCache,
        recorder: CallRecorder,
        cache_locks: KeyedLockService,
        session: SessionState,
        politeness_locks: Optional[KeyedLockService] = None,
        error_listener: Optional[ErrorListener] = None,
        worker_id: int = 0,
        policy: Optional[CrawlPolicy] = None,
    ):
        self.options = options
        self.cache = cache
        self.recorder = recorder
        self.cache_locks = cache_locks
        self.politeness_locks = politeness_locks
        self.session = session
        self.error_listener = error_listener
        self.worker_id = worker_id
        self.policy = policy

        # Canonical URL of the document the worker is loading
        self.landing_key: Optional[str] = None

        # Statistics
        self.cache_hits = 0
        self.calls_recorded = 0
        self.requests_failed = 0
        self.navigations_blocked = 0

        self.logger = structlog.get_logger(__name__, worker_id=worker_id)

    def expect_document(self, url: str):
        """Allow the next main-frame navigation to ``url`` whatever the policy says"""
        self.landing_key = _session_key(url)

    async def handle_route(self, route: Route):
        """Route handler for ``BrowserContext.route``"""
        request = route.request

        try:
            key = canonical(request.url)
        except InvalidURIError as e:
            self.logger.warning("request_rejected", url=request.url, error=str(e))
            await self._abort(route)
            return

        if key != self.landing_key and self._is_blocked_navigation(request):
            self.navigations_blocked += 1
            self.logger.info("navigation_blocked", url=request.url)
            await self._abort(route)
            return

        http_request = await self.build_request(request)

        try:
            async with self.cache_locks.hold(key):
                response = await self.serve(route, http_request)
        except RequestFailedError as e:
            self.requests_failed += 1
            self.logger.info("request_failed", url=e.url, reason=e.reason)
            await self._abort(route)
            return
        except (CacheError, RecorderError) as e:
            self.logger.error("worker_broken", url=http_request.url, error=str(e))
            self.session.mark_broken()
            if self.error_listener:
                self.error_listener(e)
            await self._abort(route)
            return

        if response.is_failure:
            self.session.omit(key)

        try:
            await route.fulfill(
                status=response.status,
                headers=response.headers.to_dict(),
                body=response.body,
            )
        except PlaywrightError as e:
            self.logger.debug("fulfill_failed", url=http_request.url, error=str(e))

    def _is_blocked_navigation(self, request: Request) -> bool:
        if self.policy is None or not request.is_navigation_request():
            return False

        try:
            main_frame = request.frame.parent_frame is None
        except PlaywrightError:
            # Service worker requests have no frame
            return False

        return main_frame and not self.policy.allows_navigation(request.url)

    async def build_request(self, request: Request) -> HttpRequest:
        """Copy a browser request, applying the crawl's header overrides"""
        headers: List[Tuple[str, str]] = [
            (header["name"], header["value"])
            for header in await request.headers_array()
            if not header["name"].startswith(":")
        ]

        http_request = HttpRequest(
            method=request.method,
            url=request.url,
            headers=headers,
            body=request.post_data_buffer,
        )
        http_request.headers.set("Accept-Encoding", "identity")
        if self.options.user_agent:
            http_request.headers.set("User-Agent", self.options.user_agent)

        return http_request

    async def serve(self, route: Route, request: HttpRequest) -> HttpResponse:
        """
        Serve a request from the cache, or fetch, cache and record it.

        Must be called with the request's cache lock held.

        Raises:
            RequestFailedError: If the fetch failed at the transport level
            CacheError: If the cache cannot be read or written
            RecorderError: If the call cannot be recorded
        """
        lookup = await asyncio.to_thread(self.cache.load, request)
        if lookup.found:
            self.cache_hits += 1
            self.logger.debug("request_served_from_cache", url=request.url)
            return lookup.call.response

        self.session.mark_loaded(request.url)

        try:
            if self.politeness_locks is not None:
                async with self.politeness_locks.hold(host_of(request.url) or ""):
                    response = await self.fetch(route, request)
            else:
                response = await self.fetch(route, request)
        except RequestFailedError:
            self.session.omit(request.url)
            raise

        call = HttpCall(request, response)
        await asyncio.to_thread(self.cache.save, call)
        await asyncio.to_thread(self.recorder.record_call, call)
        self.calls_recorded += 1

        self.logger.debug("request_fetched", url=request.url, status=response.status)
        return response

    async def fetch(self, route: Route, request: HttpRequest) -> HttpResponse:
        """
        Perform the network fetch for an intercepted request.

        Redirects are not followed; the browser follows them itself so that
        every hop passes through the interceptor.

        Raises:
            RequestFailedError: If no response was received
        """
        try:
            fetched = await route.fetch(
                headers=request.headers.to_dict(),
                max_redirects=0,
                timeout=self.options.page_load_timeout,
            )
            body = await fetched.body()
        except PlaywrightError as e:
            raise RequestFailedError(request.url, str(e)) from e

        return HttpResponse.from_fetched(
            status=fetched.status,
            headers=[(header["name"], header["value"]) for header in fetched.headers_array],
            body=body,
            reason=fetched.status_text,
        )

    async def _abort(self, route: Route):
        try:
            await route.abort("failed")
        except PlaywrightError as e:
            self.logger.debug("abort_failed", url=route.request.url, error=str(e))

    def get_statistics(self) -> dict:
        return {
            "cache_hits": self.cache_hits,
            "calls_recorded": self.calls_recorded,
            "requests_failed": self.requests_failed,
            "navigations_blocked": self.navigations_blocked,
        }
