"""
Element references - Units of crawl work.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ElementReference:
    """
    A page URL plus the click-path sequence that reproduces a page state.

    An empty ``ancestor_path`` means "load the page and register everything
    clickable on it". Otherwise each entry is the click-path of an element
    to click, in order, after loading ``url``.
    """
    url: str
    ancestor_path: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "ancestor_path", tuple(self.ancestor_path))

    @property
    def depth(self) -> int:
        """Number of clicks needed to reach this state"""
        return len(self.ancestor_path)

    @property
    def is_page_load(self) -> bool:
        return not self.ancestor_path

    def extend(self, path: str) -> "ElementReference":
        """Reference to the state reached by one more click on ``path``"""
        return ElementReference(self.url, self.ancestor_path + (path,))

    def __str__(self) -> str:
        return self.url + " @" + "".join(f" [{path}]" for path in self.ancestor_path)
