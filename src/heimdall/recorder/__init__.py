"""
Recorders - Archive every fetched HTTP call
"""

from typing import Dict, Type

from ..core.errors import ConfigurationError
from .base import CallRecorder, RecorderError
from .cdx import write_cdx, url_to_surt
from .log_recorder import LoggingCallRecorder
from .warc import WARCCallRecorder


RECORDERS: Dict[str, Type[CallRecorder]] = {
    WARCCallRecorder.name: WARCCallRecorder,
    LoggingCallRecorder.name: LoggingCallRecorder,
}


def create_recorder(selector: str) -> CallRecorder:
    """
    Instantiate a recorder from its registry name or class name.

    ``warc``, ``WARCCallRecorder`` and
    ``heimdall.crawler.recorder.warc.WARCCallRecorder`` all select the same
    implementation.

    Raises:
        ConfigurationError: If the selector names no known recorder
    """
    key = selector.strip()
    if key.lower() in RECORDERS:
        return RECORDERS[key.lower()]()

    class_name = key.rsplit(".", 1)[-1]
    for recorder_class in RECORDERS.values():
        if recorder_class.__name__ == class_name:
            return recorder_class()

    raise ConfigurationError(f"Unknown call recorder [{selector}]")


__all__ = [
    "CallRecorder",
    "RecorderError",
    "WARCCallRecorder",
    "LoggingCallRecorder",
    "RECORDERS",
    "create_recorder",
    "write_cdx",
    "url_to_surt",
]
