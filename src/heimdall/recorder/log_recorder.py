"""
Logging recorder - Logs each call instead of archiving it.
"""

from typing import Mapping

from ..http import HttpCall
from .base import CallRecorder


class LoggingCallRecorder(CallRecorder):
    """Recorder that emits one log event per call: ``<uri> <> <status>``"""

    name = "logging"

    def initialise(self, properties: Mapping[str, str]):
        self.logger.info("recorder_initialised")

    def record_call(self, call: HttpCall):
        self.recorded_count += 1
        self.logger.info(
            f"{call.request.url} <> {call.response.status}",
            method=call.request.method,
            status=call.response.status,
        )

    def dispose(self):
        self.logger.info("recorder_disposed", recorded=self.recorded_count)
