"""
Unit tests for Worker.

The worker runs against FakePage, so no browser is launched.

Run with: pytest tests/unit/test_worker.py -v
"""

import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import FakeElementHandle, FakePage
from heimdall.core.config import CrawlOptions
from heimdall.core.lock_service import KeyedLockService
from heimdall.core.policy import CrawlPolicy
from heimdall.crawler import ElementReference, Worker

SEED = "https://example.com/"


@pytest.fixture
def registered():
    return []


def make_worker(options, cache, recorder, registered):
    def register(reference):
        if reference in registered:
            return False
        registered.append(reference)
        return True

    worker = Worker(
        worker_id=1,
        browser=None,
        options=options,
        policy=CrawlPolicy.from_seeds([SEED], options),
        cache=cache,
        recorder=recorder,
        cache_locks=KeyedLockService(name="cache"),
        register=register,
    )
    worker.page = FakePage()
    return worker


@pytest.fixture
def worker(crawl_options, memory_cache, recorder, registered):
    return make_worker(crawl_options, memory_cache, recorder, registered)


class TestPageLoad:
    """Test suite for references without clicks"""

    @pytest.mark.asyncio
    async def test_registers_all_candidates(self, worker, registered):
        """Test every clickable element is registered once, ignoring mailto links"""
        worker.page.detection = {
            "candidates": [
                {"path": "0>1>0>", "href": "/about"},
                {"path": "0>1>1>", "href": "mailto:team@example.com"},
                {"path": "0>1>0>", "href": "/about"},
                {"path": "0>1>2>", "href": None},
            ],
            "mutated": [],
            "attributeMutationOccurred": False,
        }

        await worker.process_reference(ElementReference(SEED))

        assert worker.page.visited == [SEED]
        assert registered == [
            ElementReference(SEED, ("0>1>0>",)),
            ElementReference(SEED, ("0>1>2>",)),
        ]
        assert worker.references_registered == 2

    @pytest.mark.asyncio
    async def test_omitted_document_aborts(self, worker, registered):
        """Test a page whose document failed is skipped"""
        worker.page.on_goto = worker.session.omit
        worker.page.detection["candidates"] = [{"path": "0>1>0>", "href": None}]

        await worker.process_reference(ElementReference(SEED))

        assert registered == []
        assert worker.references_aborted == 1

    @pytest.mark.asyncio
    async def test_navigation_error_is_not_fatal(self, worker, registered):
        """Test a goto timeout still lets the worker inspect what loaded"""
        worker.page.goto_error = PlaywrightError("Timeout 1000ms exceeded")
        worker.page.detection["candidates"] = [{"path": "0>1>0>", "href": None}]

        await worker.process_reference(ElementReference(SEED))

        assert registered == [ElementReference(SEED, ("0>1>0>",))]

    @pytest.mark.asyncio
    async def test_off_domain_landing_aborts(self, worker, registered):
        """Test a page that redirected outside the crawl domains registers nothing"""
        worker.page.on_goto = lambda url: setattr(worker.page, "url", "https://evil.example.net/landing")
        worker.page.detection["candidates"] = [{"path": "0>1>0>", "href": None}]

        await worker.process_reference(ElementReference(SEED))

        assert registered == []
        assert worker.references_aborted == 1

    @pytest.mark.asyncio
    async def test_in_policy_redirect_explored(self, worker, registered):
        """Test a redirect to another page of the crawl domains is explored under its new URL"""
        worker.page.on_goto = lambda url: setattr(worker.page, "url", "https://www.example.com/home")
        worker.page.detection["candidates"] = [{"path": "0>1>0>", "href": None}]

        await worker.process_reference(ElementReference(SEED))

        assert registered == [ElementReference("https://www.example.com/home", ("0>1>0>",))]

    @pytest.mark.asyncio
    async def test_loading_document_expected(self, worker):
        """Test the interceptor lets the reference's own document through"""
        await worker.process_reference(ElementReference("https://example.com/page#section"))

        assert worker.interceptor.landing_key == "https://example.com/page"
        assert worker.interceptor.policy is worker.policy

    @pytest.mark.asyncio
    async def test_not_started(self, worker):
        """Test processing before start() is an error"""
        worker.page = None

        with pytest.raises(RuntimeError):
            await worker.process_reference(ElementReference(SEED))


class TestClickReplay:
    """Test suite for references with click sequences"""

    @pytest.fixture
    def button(self, worker):
        element = FakeElementHandle("0>1>0>")
        worker.page.elements["0>1>0>"] = element
        return element

    @pytest.mark.asyncio
    async def test_registers_only_mutated(self, worker, registered, button):
        """Test only elements the click changed are registered, plus the clicked element"""
        worker.page.detection = {
            "candidates": [
                {"path": "0>1>0>", "href": None},
                {"path": "0>1>3>", "href": None},
                {"path": "0>1>4>", "href": None},
            ],
            "mutated": ["0>1>3>"],
            "attributeMutationOccurred": False,
        }

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert button.clicks == 1
        assert button.disposed is True
        assert worker.page.observer_installs == 1
        assert registered == [
            ElementReference(SEED, ("0>1>0>", "0>1>3>")),
            ElementReference(SEED, ("0>1>0>", "0>1>0>")),
        ]

    @pytest.mark.asyncio
    async def test_attribute_mutation_reregisters_clicked(self, worker, registered, button):
        """Test an attribute change alone re-registers the clicked element"""
        worker.page.detection = {
            "candidates": [{"path": "0>1>0>", "href": None}],
            "mutated": [],
            "attributeMutationOccurred": True,
        }

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert registered == [ElementReference(SEED, ("0>1>0>", "0>1>0>"))]

    @pytest.mark.asyncio
    async def test_no_mutation_registers_nothing(self, worker, registered, button):
        """Test a click that changed nothing registers nothing"""
        worker.page.detection = {
            "candidates": [{"path": "0>1>0>", "href": None}, {"path": "0>1>1>", "href": None}],
            "mutated": [],
            "attributeMutationOccurred": False,
        }

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert registered == []

    @pytest.mark.asyncio
    async def test_clicks_replayed_in_order(self, worker, registered):
        """Test every ancestor is clicked before detection, observer installed before the last"""
        first = FakeElementHandle("0>1>0>")
        second = FakeElementHandle("0>1>5>")
        worker.page.elements.update({"0>1>0>": first, "0>1>5>": second})

        await worker.process_reference(ElementReference(SEED, ("0>1>0>", "0>1>5>")))

        assert first.clicks == 1
        assert second.clicks == 1
        assert worker.page.observer_installs == 1

    @pytest.mark.asyncio
    async def test_unresolvable_path_aborts(self, worker, registered):
        """Test a click-path that no longer resolves aborts the reference"""
        await worker.process_reference(ElementReference(SEED, ("0>1>9>",)))

        assert registered == []
        assert worker.references_aborted == 1

    @pytest.mark.asyncio
    async def test_max_depth_skips_detection(self, memory_cache, recorder, registered):
        """Test references at the click depth limit register no successors"""
        options = CrawlOptions(
            concurrent_workers=1,
            page_load_timeout=1000,
            dom_stability_check_interval=0,
            max_ancestor_click_depth=1,
        )
        worker = make_worker(options, memory_cache, recorder, registered)
        button = FakeElementHandle("0>1>0>")
        worker.page.elements["0>1>0>"] = button
        worker.page.detection = {
            "candidates": [{"path": "0>1>3>", "href": None}],
            "mutated": ["0>1>3>"],
            "attributeMutationOccurred": True,
        }

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert button.clicks == 1
        assert registered == []


class TestClickNavigation:
    """Test suite for clicks that change the document"""

    def navigate_on_click(self, worker, url, loaded=True):
        def on_click():
            worker.page.url = url
            if loaded:
                worker.session.mark_loaded(url)

        element = FakeElementHandle("0>1>0>", on_click=on_click)
        worker.page.elements["0>1>0>"] = element
        worker.page.detection["candidates"] = [{"path": "0>1>7>", "href": None}]
        worker.page.detection["mutated"] = ["0>1>7>"]

    @pytest.mark.asyncio
    async def test_loaded_in_policy_navigation_registered(self, worker, registered):
        """Test a click leading to a freshly loaded in-policy page registers that page"""
        self.navigate_on_click(worker, "https://example.com/next")

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert registered == [ElementReference("https://example.com/next")]

    @pytest.mark.asyncio
    async def test_navigation_not_loaded_ignored(self, worker, registered):
        """Test a navigation whose document was not fetched in this session is ignored"""
        self.navigate_on_click(worker, "https://example.com/next", loaded=False)

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert registered == []

    @pytest.mark.asyncio
    async def test_out_of_policy_navigation_ignored(self, worker, registered):
        """Test a navigation to another domain is not followed"""
        self.navigate_on_click(worker, "https://other.org/")

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert registered == []

    @pytest.mark.asyncio
    async def test_fragment_change_is_same_document(self, worker, registered):
        """Test a click that only changes the fragment keeps exploring the page"""
        self.navigate_on_click(worker, SEED + "#tab")

        await worker.process_reference(ElementReference(SEED, ("0>1>0>",)))

        assert registered == [ElementReference(SEED + "#tab", ("0>1>0>", "0>1>7>"))]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
