"""
Crawler module - Browser workers and the in-page protocol.

- Worker: explores page states in its own browser context
- RequestInterceptor: serves the browser's requests through the shared cache
- ClickPathCodec: addresses elements by their child-index path
- ElementReference: unit of crawl work (URL + click sequence)
"""

from .click_path import ClickPathCodec, ScriptFailureError, parse_click_path
from .dom import wait_for_dom_stability
from .element_reference import ElementReference
from .interceptor import RequestFailedError, RequestInterceptor, SessionState
from .scripts import build_startup_script
from .worker import IGNORED_HREF_PATTERN, Worker


__all__ = [
    # Workers
    "Worker",
    "RequestInterceptor",
    "SessionState",
    # Data structures
    "ElementReference",
    "ClickPathCodec",
    "parse_click_path",
    # Helpers
    "build_startup_script",
    "wait_for_dom_stability",
    "IGNORED_HREF_PATTERN",
    # Exceptions
    "ScriptFailureError",
    "RequestFailedError",
]
