"""
HTTP module - Request, response and call data structures.
"""

from .call import BODY_METHODS, Headers, HttpCall, HttpRequest, HttpResponse


__all__ = [
    "BODY_METHODS",
    "Headers",
    "HttpCall",
    "HttpRequest",
    "HttpResponse",
]
