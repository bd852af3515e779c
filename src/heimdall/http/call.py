"""
HTTP call data structures.

An :class:`HttpCall` pairs the request the browser made with the response
that was served for it. Responses are fully materialized (the body is bytes,
never a stream) because the cache is the canonical copy and the recorder
archives the same bytes.
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.uri import canonical


Header = Tuple[str, str]

BODY_METHODS = ("POST", "PUT")

# Framing headers that describe the wire encoding rather than the decoded body
_FRAMING_HEADERS = ("transfer-encoding", "content-encoding")


class Headers:
    """
    Ordered, multi-valued HTTP headers.

    Names keep their original case but are compared case-insensitively.
    """

    def __init__(self, items: Optional[Iterable[Header]] = None):
        self._items: List[Header] = [(str(name), str(value)) for name, value in items or []]

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first value of a header"""
        lowered = name.lower()
        for key, value in self._items:
            if key.lower() == lowered:
                return value
        return default

    def get_all(self, name: str) -> List[str]:
        """Get every value of a header, in order"""
        lowered = name.lower()
        return [value for key, value in self._items if key.lower() == lowered]

    def names(self) -> List[str]:
        """Distinct header names in first-seen order"""
        seen: Dict[str, str] = {}
        for key, _ in self._items:
            seen.setdefault(key.lower(), key)
        return list(seen.values())

    def set(self, name: str, value: str) -> None:
        """Replace every value of a header with a single one"""
        self.remove(name)
        self._items.append((name, value))

    def remove(self, name: str) -> None:
        """Remove every value of a header"""
        lowered = name.lower()
        self._items = [(key, value) for key, value in self._items if key.lower() != lowered]

    def items(self) -> List[Header]:
        return list(self._items)

    def to_dict(self) -> Dict[str, str]:
        """
        Collapse to a single-valued mapping (lower-case names).

        Repeated ``set-cookie`` values are joined with newlines, other
        repeated headers with a comma.
        """
        collapsed: Dict[str, str] = {}
        for key, value in self._items:
            lowered = key.lower()
            if lowered in collapsed:
                separator = "\n" if lowered == "set-cookie" else ", "
                collapsed[lowered] = collapsed[lowered] + separator + value
            else:
                collapsed[lowered] = value
        return collapsed

    def equivalent_to(self, other: "Headers") -> bool:
        """Equality up to the case of header names"""
        mine = [(key.lower(), value) for key, value in self._items]
        theirs = [(key.lower(), value) for key, value in other._items]
        return mine == theirs

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self.equivalent_to(other)

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


@dataclass
class HttpRequest:
    """A request made by the browser"""
    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    body: Optional[bytes] = None

    def __post_init__(self):
        self.method = self.method.upper()
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)

    @property
    def has_body(self) -> bool:
        """Whether the body takes part in the request fingerprint"""
        return self.method in BODY_METHODS

    @property
    def canonical_url(self) -> str:
        return canonical(self.url)


@dataclass
class HttpResponse:
    """
    A fully materialized HTTP response (the cached response).

    Serialized for the cache as a JSON document with the body in base64.
    """
    status: int
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    reason: str = ""

    def __post_init__(self):
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)

    @classmethod
    def from_fetched(
        cls,
        status: int,
        headers: Iterable[Header],
        body: bytes,
        reason: str = "",
    ) -> "HttpResponse":
        """
        Build a response from a fetched (already decoded) body.

        Transfer and content encodings were removed while fetching, so the
        framing headers are dropped and Content-Length is made to match the
        stored body.
        """
        normalized = Headers(headers)
        for name in _FRAMING_HEADERS:
            normalized.remove(name)
        if "content-length" in normalized:
            normalized.set("Content-Length", str(len(body)))
        return cls(status=status, headers=normalized, body=body, reason=reason)

    @property
    def is_successful(self) -> bool:
        """2xx status"""
        return 200 <= self.status < 300

    @property
    def is_failure(self) -> bool:
        """Whether the response marks its URI for omission (anything outside 2xx/3xx)"""
        return not 200 <= self.status < 400

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable document"""
        return {
            "status": self.status,
            "reason": self.reason,
            "headers": [[name, value] for name, value in self.headers],
            "body": base64.b64encode(self.body).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HttpResponse":
        """Rebuild a response from :meth:`to_dict` output"""
        return cls(
            status=int(data["status"]),
            headers=Headers((name, value) for name, value in data.get("headers", [])),
            body=base64.b64decode(data.get("body", "")),
            reason=data.get("reason", ""),
        )


@dataclass
class HttpCall:
    """A request and the response served for it"""
    request: HttpRequest
    response: HttpResponse

    def __repr__(self) -> str:
        return f"HttpCall({self.request.method} {self.request.url} -> {self.response.status})"
