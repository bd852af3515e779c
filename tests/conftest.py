"""
Shared fixtures and Playwright fakes for the test suite.

The fakes implement just the parts of the Playwright async API the crawler
touches, so unit tests run without a browser.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest
from playwright.async_api import Error as PlaywrightError

from heimdall.cache import InMemoryServerResponseCache
from heimdall.core.config import CrawlOptions
from heimdall.crawler import scripts
from heimdall.recorder import CallRecorder, RecorderError


class FakeFrame:
    """Stand-in for ``playwright.async_api.Frame``"""

    def __init__(self, parent_frame: Optional["FakeFrame"] = None):
        self.parent_frame = parent_frame


class FakeRequest:
    """
    Stand-in for ``playwright.async_api.Request``.

    ``navigation`` marks a document request; ``frame`` defaults to a main
    frame.
    """

    def __init__(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None,
                 post_data: Optional[bytes] = None, navigation: bool = False,
                 frame: Optional[FakeFrame] = None):
        self.url = url
        self.navigation = navigation
        self.frame = frame or FakeFrame()
        self.method = method
        self._headers = headers if headers is not None else {
            "Accept": "*/*",
            "Accept-Encoding": "gzip, deflate, br",
            "User-Agent": "HeadlessChrome",
        }
        self.post_data_buffer = post_data

    def is_navigation_request(self) -> bool:
        return self.navigation

    async def headers_array(self) -> List[Dict[str, str]]:
        return [{"name": name, "value": value} for name, value in self._headers.items()]


class FakeAPIResponse:
    """Stand-in for ``playwright.async_api.APIResponse``"""

    def __init__(self, status: int = 200, body: bytes = b"<html></html>",
                 headers: Optional[List[tuple]] = None, status_text: str = "OK"):
        self.status = status
        self.status_text = status_text
        self._body = body
        self.headers_array = [
            {"name": name, "value": value}
            for name, value in (headers if headers is not None else [("Content-Type", "text/html")])
        ]

    async def body(self) -> bytes:
        return self._body


class FakeRoute:
    """
    Stand-in for ``playwright.async_api.Route``.

    ``responder`` receives the fetch keyword arguments and returns a
    FakeAPIResponse, or raises PlaywrightError to simulate a transport failure.
    """

    def __init__(self, request: FakeRequest, responder: Optional[Callable[..., Any]] = None):
        self.request = request
        self.responder = responder or (lambda **kwargs: FakeAPIResponse())
        self.fetch_calls: List[Dict[str, Any]] = []
        self.fulfilled: Optional[Dict[str, Any]] = None
        self.aborted: Optional[str] = None

    async def fetch(self, **kwargs) -> FakeAPIResponse:
        self.fetch_calls.append(kwargs)
        result = self.responder(**kwargs)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def fulfill(self, status: int, headers: Dict[str, str], body: bytes):
        self.fulfilled = {"status": status, "headers": headers, "body": body}

    async def abort(self, error_code: Optional[str] = None):
        self.aborted = error_code


class FakeJSHandle:
    """Stand-in for the handle ``Page.evaluate_handle`` returns"""

    def __init__(self, element: Optional["FakeElementHandle"]):
        self.element = element
        self.disposed = False

    def as_element(self) -> Optional["FakeElementHandle"]:
        return self.element

    async def dispose(self):
        self.disposed = True


class FakeElementHandle:
    """Stand-in for ``playwright.async_api.ElementHandle``"""

    def __init__(self, path: str, on_click: Optional[Callable[[], None]] = None):
        self.path = path
        self.on_click = on_click
        self.clicks = 0
        self.disposed = False

    async def evaluate(self, script: str, arg: Any = None):
        if script == scripts.CLICK_ELEMENT_SCRIPT:
            self.clicks += 1
            if self.on_click:
                self.on_click()
            return None
        raise PlaywrightError(f"Unexpected element script: {script[:40]}")

    async def dispose(self):
        self.disposed = True


class FakePage:
    """
    Stand-in for ``playwright.async_api.Page``.

    ``elements`` maps click-paths to element handles; ``detection`` is what
    the clickable element detection script returns.
    """

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.elements: Dict[str, FakeElementHandle] = {}
        self.detection: Dict[str, Any] = {"candidates": [], "mutated": [], "attributeMutationOccurred": False}
        self.dom = "<html><body></body></html>"
        self.visited: List[str] = []
        self.observer_installs = 0
        self.goto_error: Optional[Exception] = None
        self.on_goto: Optional[Callable[[str], None]] = None
        self.handlers: Dict[str, Callable] = {}

    async def goto(self, url: str, wait_until: str = "load", timeout: Optional[float] = None):
        self.visited.append(url)
        self.url = url
        if self.on_goto:
            self.on_goto(url)
        if self.goto_error:
            raise self.goto_error

    async def evaluate(self, script: str, arg: Any = None):
        if script == scripts.DOM_SNAPSHOT_SCRIPT:
            return self.dom
        if script == scripts.MUTATION_OBSERVER_SCRIPT:
            self.observer_installs += 1
            return True
        if script == scripts.DETECT_CLICKABLE_ELEMENTS_SCRIPT:
            return self.detection
        raise PlaywrightError(f"Unexpected page script: {script[:40]}")

    async def evaluate_handle(self, script: str, arg: Any = None) -> FakeJSHandle:
        if script != scripts.RESOLVE_CLICK_PATH_SCRIPT:
            raise PlaywrightError(f"Unexpected handle script: {script[:40]}")
        path = "0>1>" + "".join(f"{index}>" for index in arg)
        return FakeJSHandle(self.elements.get(path))

    def on(self, event: str, handler: Callable):
        self.handlers[event] = handler


class ListCallRecorder(CallRecorder):
    """Recorder keeping calls in a list"""

    name = "list"

    def __init__(self, fail: bool = False):
        super().__init__()
        self.calls = []
        self.fail = fail
        self.disposed = 0

    def initialise(self, properties):
        pass

    def record_call(self, call):
        if self.fail:
            raise RecorderError(f"Cannot record {call.request.url}")
        self.calls.append(call)
        self.recorded_count += 1

    def dispose(self):
        self.disposed += 1


@pytest.fixture
def crawl_options() -> CrawlOptions:
    """Fast crawl options for unit tests"""
    return CrawlOptions(
        concurrent_workers=1,
        page_load_timeout=1000,
        dom_stability_check_interval=0,
    )


@pytest.fixture
def memory_cache() -> InMemoryServerResponseCache:
    cache = InMemoryServerResponseCache()
    cache.initialise({})
    return cache


@pytest.fixture
def recorder() -> ListCallRecorder:
    return ListCallRecorder()
