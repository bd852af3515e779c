"""
Call Recorder - Abstract base class for HTTP call recorders.

The interceptor hands every call it fetched from the network (never cache
hits) to the recorder exactly once.

Design Pattern: Strategy Pattern
"""

from abc import ABC, abstractmethod
from typing import Mapping

import structlog

from ..core.errors import HeimdallError
from ..http import HttpCall


class RecorderError(HeimdallError):
    """Raised when a call cannot be recorded or the archive cannot be finalized"""
    pass


class CallRecorder(ABC):
    """
    Abstract base class for call recorders.

    Implementations must accept concurrent ``record_call`` invocations from
    several workers and must never interleave two calls in their output.

    Example:
        >>> recorder = WARCCallRecorder()
        >>> recorder.initialise(settings)
        >>> recorder.record_call(call)
        >>> recorder.dispose()
    """

    name = "recorder"

    def __init__(self):
        self.recorded_count = 0
        self.logger = structlog.get_logger(__name__, recorder=self.name)

    @abstractmethod
    def initialise(self, properties: Mapping[str, str]):
        """
        Open the recorder output.

        Raises:
            ConfigurationError: If a required setting is missing
            RecorderError: If the output cannot be opened
        """
        pass

    @abstractmethod
    def record_call(self, call: HttpCall):
        """
        Append one call to the output.

        Raises:
            RecorderError: If the call cannot be written
        """
        pass

    @abstractmethod
    def dispose(self):
        """
        Close the output. Safe to call more than once.

        Raises:
            RecorderError: If the output cannot be finalized
        """
        pass

    def get_statistics(self) -> dict:
        return {"recorded": self.recorded_count}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(recorded={self.recorded_count})"
