"""
Worker - Explores page states in a dedicated browser context.

Each worker owns one Playwright ``BrowserContext`` with one ``Page``, a
:class:`RequestInterceptor` routing all of the context's requests through
the shared cache, and the :class:`SessionState` the two share.

Processing an :class:`ElementReference`:

1. Load the URL and wait for the DOM to settle
2. Skip the page if its own document failed (omission set), or if a
   redirect left the crawl domains
3. Page load (empty path): register every clickable element
4. Click sequence: replay each click; when a click navigates to a freshly
   loaded in-policy URL, register that URL instead and stop. After the last
   click register only the elements the click added or changed.
"""

import re
from typing import Callable, Optional, Sequence

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    ElementHandle,
    Error as PlaywrightError,
    Page,
)

from ..cache import ServerResponseCache
from ..core.config import CrawlOptions
from ..core.lock_service import KeyedLockService
from ..core.policy import CrawlPolicy
from ..core.uri import InvalidURIError, canonical
from ..recorder import CallRecorder
from .click_path import ClickPathCodec, ScriptFailureError
from .dom import wait_for_dom_stability
from .element_reference import ElementReference
from .interceptor import ErrorListener, RequestInterceptor, SessionState
from .scripts import (
    CLICK_ELEMENT_SCRIPT,
    DETECT_CLICKABLE_ELEMENTS_SCRIPT,
    MUTATION_OBSERVER_SCRIPT,
    build_startup_script,
)


# Links the browser cannot (or should not) follow
IGNORED_HREF_PATTERN = re.compile(r"(tel|mailto|ftp|file|sms|geo|callto|sip):.*")


def _same_document(first: str, second: str) -> bool:
    try:
        return canonical(first) == canonical(second)
    except InvalidURIError:
        return first == second


class Worker:
    """
    A single crawl worker.

    Example:
        >>> worker = Worker(1, browser, options, policy, cache, recorder, cache_locks, queue.register)
        >>> await worker.start()
        >>> await worker.process_reference(ElementReference("https://example.com/"))
        >>> await worker.close()
    """

    def __init__(
        self,
        worker_id: int,
        browser: Browser,
        options: CrawlOptions,
        policy: CrawlPolicy,
        cache: ServerResponseCache,
        recorder: CallRecorder,
        cache_locks: KeyedLockService,
        register: Callable[[ElementReference], bool],
        politeness_locks: Optional[KeyedLockService] = None,
        error_listener: Optional[ErrorListener] = None,
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Identifier used in logs
            browser: Shared browser the worker opens its context in
            options: Crawl options
            policy: Domain policy for followed navigations
            cache: Shared response cache
            recorder: Shared call recorder
            cache_locks: Lock service keyed by canonical URI
            register: Callback enqueuing a discovered reference; returns
                False when the reference was already queued
            politeness_locks: Lock service keyed by host, or None to disable politeness
            error_listener: Callback for cache and recorder failures
        """
        self.worker_id = worker_id
        self.browser = browser
        self.options = options
        self.policy = policy
        self.register = register

        self.session = SessionState()
        self.interceptor = RequestInterceptor(
            options=options,
            cache=cache,
            recorder=recorder,
            cache_locks=cache_locks,
            session=self.session,
            politeness_locks=politeness_locks,
            error_listener=error_listener,
            worker_id=worker_id,
            policy=policy,
        )
        self.codec = ClickPathCodec()

        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

        # Statistics
        self.references_processed = 0
        self.references_registered = 0
        self.references_aborted = 0

        self.logger = structlog.get_logger(__name__, worker_id=worker_id)

    @property
    def broken(self) -> bool:
        return self.session.broken

    async def start(self):
        """Open the worker's browser context and page"""
        self.context = await self.browser.new_context(user_agent=self.options.user_agent)
        await self.context.add_init_script(
            script=build_startup_script(
                constant_date=self.options.constant_date_string,
                constant_random=self.options.constant_random_value,
            )
        )
        await self.context.route("**/*", self.interceptor.handle_route)

        self.page = await self.context.new_page()
        self.page.on("dialog", self._dismiss_dialog)
        self.page.on("popup", self._close_popup)

        self.logger.debug("worker_started")

    async def close(self):
        """Close the browser context. Safe to call more than once."""
        if self.context is None:
            return

        context, self.context, self.page = self.context, None, None
        try:
            await context.close()
        except PlaywrightError as e:
            self.logger.debug("context_close_failed", error=str(e))

        self.logger.debug("worker_closed", **self.get_statistics())

    async def process_reference(self, reference: ElementReference):
        """
        Explore one page state and register its successors.

        Script and navigation failures abort the reference; they are logged
        and never propagate.
        """
        if self.page is None:
            raise RuntimeError("Worker not started. Call start() first.")

        self.references_processed += 1
        self.logger.info("reference_processing", reference=str(reference))

        self.interceptor.expect_document(reference.url)
        try:
            await self.page.goto(
                reference.url,
                wait_until="domcontentloaded",
                timeout=self.options.page_load_timeout,
            )
        except PlaywrightError as e:
            self.logger.info("navigation_failed", url=reference.url, error=str(e))

        await self.wait_for_dom()

        if self.session.pop_omission(reference.url):
            self._abort(reference, "document failed to load")
            return

        landing_url = self.page.url
        if not _same_document(landing_url, reference.url) and not self.policy.allows_navigation(landing_url):
            self._abort(reference, f"landed outside the crawl domains on {landing_url}")
            return

        try:
            if reference.is_page_load:
                await self.detect_clickable_elements((), initial_page_load=True)
            else:
                await self._replay_clicks(reference)
        except ScriptFailureError as e:
            self._abort(reference, str(e))

    async def _replay_clicks(self, reference: ElementReference):
        path = reference.ancestor_path

        for index, step in enumerate(path):
            element = await self.codec.resolve(self.page, step)

            if index == len(path) - 1:
                try:
                    await self.page.evaluate(MUTATION_OBSERVER_SCRIPT)
                except PlaywrightError as e:
                    raise ScriptFailureError(f"Cannot install mutation observer: {e}") from e

            self.session.clear_loaded()
            await self.click(element)
            await self.wait_for_dom()

            current_url = self.page.url
            if not _same_document(current_url, reference.url):
                if self.session.was_loaded(current_url) and self.policy.allows_navigation(current_url):
                    self._register(ElementReference(current_url))
                else:
                    self.logger.debug("navigation_ignored", url=current_url)
                return

        max_depth = self.options.max_ancestor_click_depth
        if max_depth == 0 or len(path) < max_depth:
            await self.detect_clickable_elements(path, initial_page_load=False)

    async def click(self, element: ElementHandle):
        """Click an element, re-enabling it first if it is disabled"""
        try:
            await element.evaluate(CLICK_ELEMENT_SCRIPT)
        except PlaywrightError as e:
            # Clicks that navigate tear down the execution context mid-call
            self.logger.debug("click_interrupted", error=str(e))
        finally:
            await element.dispose()

    async def wait_for_dom(self) -> bool:
        return await wait_for_dom_stability(
            self.page,
            timeout_ms=self.options.page_load_timeout,
            check_interval_ms=self.options.dom_stability_check_interval,
        )

    async def detect_clickable_elements(self, parent_path: Sequence[str], initial_page_load: bool):
        """
        Register the click targets of the current page state.

        On a page load every candidate is registered. After a click only
        candidates the click added or changed are registered, and the
        clicked element itself is registered again if it is still there and
        the click changed the DOM.

        Raises:
            ScriptFailureError: If the detection script fails
        """
        try:
            detected = await self.page.evaluate(DETECT_CLICKABLE_ELEMENTS_SCRIPT, self.options.submit_forms)
        except PlaywrightError as e:
            raise ScriptFailureError(f"Cannot detect clickable elements on {self.page.url}: {e}") from e

        parent = ElementReference(self.page.url, tuple(parent_path))
        mutated = set(detected["mutated"])
        clicked = None if initial_page_load else parent.ancestor_path[-1]
        clicked_still_present = False
        seen = set()

        for candidate in detected["candidates"]:
            path, href = candidate["path"], candidate.get("href")

            if href and IGNORED_HREF_PATTERN.fullmatch(href):
                continue
            if path in seen:
                continue
            seen.add(path)

            if path == clicked:
                clicked_still_present = True
            if initial_page_load or path in mutated:
                self._register(parent.extend(path))

        if clicked_still_present and (detected["attributeMutationOccurred"] or mutated):
            self._register(parent.extend(clicked))

    def _register(self, reference: ElementReference):
        if self.register(reference):
            self.references_registered += 1

    def _abort(self, reference: ElementReference, reason: str):
        self.references_aborted += 1
        self.logger.warning("reference_aborted", reference=str(reference), reason=reason)

    async def _dismiss_dialog(self, dialog: Dialog):
        try:
            await dialog.dismiss()
        except PlaywrightError as e:
            self.logger.debug("dialog_dismiss_failed", error=str(e))

    async def _close_popup(self, popup: Page):
        self.logger.debug("popup_closed", url=popup.url)
        try:
            await popup.close()
        except PlaywrightError as e:
            self.logger.debug("popup_close_failed", error=str(e))

    def get_statistics(self) -> dict:
        return {
            "references_processed": self.references_processed,
            "references_registered": self.references_registered,
            "references_aborted": self.references_aborted,
            **self.interceptor.get_statistics(),
        }
