"""
DOM stability wait.

A page is considered settled when two snapshots of
``document.documentElement.outerHTML`` taken one check interval apart are
identical.
"""

import asyncio

import structlog
from playwright.async_api import Error as PlaywrightError, Page

from .scripts import DOM_SNAPSHOT_SCRIPT


logger = structlog.get_logger(__name__)

# Back-off after a failed snapshot (usually a navigation in progress)
SNAPSHOT_RETRY_DELAY = 0.5


async def _until_stable(page: Page, interval: float):
    while True:
        try:
            initial = await page.evaluate(DOM_SNAPSHOT_SCRIPT)
            await asyncio.sleep(interval)
            current = await page.evaluate(DOM_SNAPSHOT_SCRIPT)
        except PlaywrightError as e:
            logger.debug("dom_snapshot_failed", url=page.url, error=str(e))
            await asyncio.sleep(SNAPSHOT_RETRY_DELAY)
            continue

        if initial == current:
            return


async def wait_for_dom_stability(page: Page, timeout_ms: int, check_interval_ms: int) -> bool:
    """
    Wait until the DOM stops changing.

    Args:
        page: Page to watch
        timeout_ms: Overall budget in milliseconds
        check_interval_ms: Delay between the two compared snapshots

    Returns:
        True if the DOM settled, False if the budget ran out first
    """
    try:
        await asyncio.wait_for(_until_stable(page, check_interval_ms / 1000), timeout_ms / 1000)
    except asyncio.TimeoutError:
        logger.debug("dom_stability_timeout", url=page.url, timeout_ms=timeout_ms)
        return False

    return True
