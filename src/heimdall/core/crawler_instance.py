"""
Crawler Instance - Runs a crawl across N concurrent browser workers.

Workers pull :class:`ElementReference` items from a shared FIFO queue and
push the references they discover back onto it. The crawl ends by
consensus: a worker that finds the queue empty counts itself idle and
sleeps one polling interval; once every worker is idle at the same time
there is no work left anywhere and the workers return.

Design Pattern: Producer-Consumer
"""

import asyncio
import signal
import threading
from collections import deque
from typing import Callable, Deque, Iterable, List, Optional, Set

import structlog
from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright

from ..cache import ServerResponseCache
from ..crawler.element_reference import ElementReference
from ..crawler.worker import Worker
from ..recorder import CallRecorder
from .config import CrawlOptions
from .errors import HeimdallError
from .lock_service import KeyedLockService
from .policy import CrawlPolicy


ErrorListener = Callable[[Exception], None]


class ReferenceQueue:
    """
    FIFO queue of references shared by all workers.

    A reference is only queued once per crawl; registering the same URL and
    click sequence again is a no-op. The seen set is kept for the whole
    crawl, so it grows with the number of distinct page states reached;
    ``max_ancestor_click_depth`` is what bounds it.
    """

    def __init__(self):
        self._items: Deque[ElementReference] = deque()
        self._seen: Set[ElementReference] = set()
        self._lock = threading.Lock()

        self.logger = structlog.get_logger(__name__)

    def register(self, reference: ElementReference) -> bool:
        """
        Queue a reference.

        Returns:
            False if the reference was queued before
        """
        with self._lock:
            if reference in self._seen:
                return False
            self._seen.add(reference)
            self._items.append(reference)

        self.logger.debug("reference_registered", reference=str(reference))
        return True

    def poll(self) -> Optional[ElementReference]:
        """Take the oldest reference, or None if the queue is empty"""
        with self._lock:
            return self._items.popleft() if self._items else None

    @property
    def registered(self) -> int:
        """Number of distinct references queued since the start"""
        return len(self._seen)

    def __len__(self) -> int:
        return len(self._items)


class CrawlerInstance:
    """
    Coordinates one crawl.

    Responsibilities:
    1. Seed the queue and derive the domain policy from the seeds
    2. Launch the browser and run the workers until consensus
    3. Dispose workers, browser and recorder exactly once, on completion or
       on SIGINT/SIGTERM

    The cache is owned by the caller, which opens it before the crawl and
    closes it afterwards.

    Example:
        >>> instance = CrawlerInstance(recorder, cache, options, reference_polling_interval=2000)
        >>> await instance.crawl(["https://example.com/"])
        >>> instance.get_stats()["calls_recorded"]
        42
    """

    def __init__(
        self,
        recorder: CallRecorder,
        cache: ServerResponseCache,
        options: CrawlOptions,
        reference_polling_interval: int = 2000,
        error_listener: Optional[ErrorListener] = None,
        headless: bool = True,
    ):
        """
        Initialize the crawler instance.

        Args:
            recorder: Initialised call recorder
            cache: Initialised response cache
            options: Crawl options
            reference_polling_interval: Idle sleep between queue polls (ms)
            error_listener: Callback for worker, cache and recorder failures
            headless: Run the browser headless
        """
        self.recorder = recorder
        self.cache = cache
        self.options = options
        self.reference_polling_interval = reference_polling_interval
        self.error_listener = error_listener or self._log_error
        self.headless = headless

        self.queue = ReferenceQueue()
        self.policy: Optional[CrawlPolicy] = None
        self.cache_locks = KeyedLockService(name="response-cache")
        self.politeness_locks: Optional[KeyedLockService] = None

        self.workers: List[Worker] = []
        self.seeds: List[str] = []
        self.disposed = False
        self.interrupted = False

        self._tasks: List[asyncio.Task] = []
        self._idle_workers = 0
        self._dispose_task: Optional[asyncio.Task] = None
        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None

        self.logger = structlog.get_logger(__name__)

    async def crawl(self, seed_urls: Iterable[str]):
        """
        Crawl from the seed URLs until no worker has work left.

        Seeds with an unsupported scheme are logged and skipped. The
        instance is disposed when this returns.

        Args:
            seed_urls: Seed URLs
        """
        self.disposed = False
        self._dispose_task = None
        self.seeds = self._accept_seeds(seed_urls)

        self.policy = CrawlPolicy.from_seeds(self.seeds, self.options)
        if self.options.limit_single_concurrent_hit_per_domain:
            self.politeness_locks = KeyedLockService(name="politeness")
        self.cache_locks = KeyedLockService(name="response-cache")
        self.queue = ReferenceQueue()
        self.workers = []
        self._idle_workers = 0

        for url in self.seeds:
            self.queue.register(ElementReference(url))

        self.logger.info(
            "crawl_started",
            seeds=len(self.seeds),
            workers=self.options.concurrent_workers,
            policy=repr(self.policy),
        )

        try:
            await self.launch_browser()
            self._tasks = [
                asyncio.create_task(self._run_worker(worker_id), name=f"heimdall-worker-{worker_id}")
                for worker_id in range(1, self.options.concurrent_workers + 1)
            ]
            await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            await self.dispose()

        self.logger.info("crawl_completed", interrupted=self.interrupted, **self.get_stats())

    async def launch_browser(self):
        """Start Playwright and the shared Chromium browser"""
        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(headless=self.headless)
        self.logger.debug("browser_launched", headless=self.headless)

    def create_worker(self, worker_id: int) -> Worker:
        """Build one worker bound to this crawl's shared state"""
        return Worker(
            worker_id=worker_id,
            browser=self.browser,
            options=self.options,
            policy=self.policy,
            cache=self.cache,
            recorder=self.recorder,
            cache_locks=self.cache_locks,
            register=self.queue.register,
            politeness_locks=self.politeness_locks,
            error_listener=self.error_listener,
        )

    async def _run_worker(self, worker_id: int):
        worker_count = self.options.concurrent_workers
        interval = self.reference_polling_interval / 1000
        waiting = False

        try:
            worker = self.create_worker(worker_id)
            self.workers.append(worker)
            await worker.start()

            while True:
                if worker.broken:
                    self.logger.warning("worker_retired", worker_id=worker_id)
                    return

                reference = self.queue.poll()

                if reference is None:
                    if not waiting:
                        self._idle_workers += 1
                    waiting = True
                    if self._idle_workers == worker_count:
                        # No worker has work and the queue is empty
                        return
                    await asyncio.sleep(interval)
                    continue

                if waiting:
                    waiting = False
                    self._idle_workers -= 1

                await worker.process_reference(reference)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("worker_failed", worker_id=worker_id, error=str(e))
            self.error_listener(HeimdallError(f"Error from worker [{worker_id}]: {e}"))
        finally:
            if not waiting:
                self._idle_workers += 1

    def _accept_seeds(self, seed_urls: Iterable[str]) -> List[str]:
        scheme_check = CrawlPolicy([], include_local_file_uris=self.options.include_local_file_uris)
        accepted = []

        for url in seed_urls:
            url = url.strip()
            if not url:
                continue
            if not scheme_check.accepts_seed(url):
                self.logger.warning("seed_rejected", url=url)
                continue
            accepted.append(url)

        return accepted

    async def dispose(self):
        """
        Stop the workers and release every resource. Idempotent; concurrent
        callers wait for the same shutdown.
        """
        if self._dispose_task is None:
            self.disposed = True
            self._dispose_task = asyncio.ensure_future(self._dispose())
        await asyncio.shield(self._dispose_task)

    async def _dispose(self):
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for worker in self.workers:
            await worker.close()

        if self.browser is not None:
            try:
                await self.browser.close()
            except PlaywrightError as e:
                self.logger.debug("browser_close_failed", error=str(e))
            self.browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

        try:
            self.recorder.dispose()
        except HeimdallError as e:
            self.error_listener(e)

        self.logger.info("crawler_disposed")

    def install_signal_handlers(self):
        """Dispose the crawl on SIGINT and SIGTERM"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals):
        self.logger.warning("crawl_interrupted", signal=sig.name)
        self.interrupted = True
        asyncio.ensure_future(self.dispose())

    def get_stats(self) -> dict:
        """
        Get crawl statistics.

        Returns:
            Dictionary with reference and call counters summed over workers
        """
        stats = {
            "seeds": len(self.seeds),
            "references_processed": 0,
            "references_registered": self.queue.registered,
            "references_aborted": 0,
            "references_pending": len(self.queue),
            "calls_recorded": 0,
            "cache_hits": 0,
            "requests_failed": 0,
            "workers_broken": 0,
        }

        for worker in self.workers:
            worker_stats = worker.get_statistics()
            for key in ("references_processed", "references_aborted", "calls_recorded", "cache_hits", "requests_failed"):
                stats[key] += worker_stats[key]
            if worker.broken:
                stats["workers_broken"] += 1

        return stats

    def _log_error(self, error: Exception):
        self.logger.error("crawl_error", error=str(error), exc_info=error)
