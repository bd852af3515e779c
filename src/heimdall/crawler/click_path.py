"""
Click-path codec.

A click-path addresses an element by its child indices from the document
root, each followed by ``>``: ``"0>1>3>0>"`` is the first child of the
fourth child of ``<body>`` (the second child of ``<html>``). Paths are
encoded in the page by the detection script and resolved in the page again
after ``parse_click_path`` has validated them. They stay valid as long as
nothing at or above the element is restructured in between.
"""

from typing import List

import structlog
from playwright.async_api import ElementHandle, Error as PlaywrightError, Page

from ..core.errors import HeimdallError
from .scripts import RESOLVE_CLICK_PATH_SCRIPT


logger = structlog.get_logger(__name__)


class ScriptFailureError(HeimdallError):
    """Raised when an in-page script fails or a click-path does not resolve"""
    pass


def parse_click_path(path: str) -> List[int]:
    """
    Child indices below ``<body>`` that a click-path descends through.

    Example:
        >>> parse_click_path("0>1>3>0>")
        [3, 0]

    Raises:
        ScriptFailureError: If the path is malformed
    """
    segments = path.split(">")
    if len(segments) < 3 or segments[-1] != "":
        raise ScriptFailureError(f"Malformed click-path [{path}]")

    try:
        return [int(segment) for segment in segments[2:-1]]
    except ValueError as e:
        raise ScriptFailureError(f"Malformed click-path [{path}]") from e


class ClickPathCodec:
    """Resolves click-paths back to elements of the current document"""

    async def resolve(self, page: Page, path: str) -> ElementHandle:
        """
        Find the element a click-path points to in the current document.

        Raises:
            ScriptFailureError: If the path is malformed or no element exists at it
        """
        indices = parse_click_path(path)

        try:
            handle = await page.evaluate_handle(RESOLVE_CLICK_PATH_SCRIPT, indices)
        except PlaywrightError as e:
            raise ScriptFailureError(f"Error finding element at path [{path}]: {e}") from e

        element = handle.as_element()
        if element is None:
            await handle.dispose()
            raise ScriptFailureError(f"Cannot find element at path [{path}]")

        logger.debug("click_path_resolved", path=path)
        return element
