"""
WARC recorder - Appends request/response record pairs to a WARC file.

The file starts with a ``warcinfo`` record. Every call adds a ``request``
record followed by a ``response`` record that points back to it through
``WARC-Concurrent-To``; both carry the same ``WARC-Date``. When the recorder
is disposed the WARC is closed and a CDX index is derived from it.
"""

import io
import threading
from datetime import UTC, datetime
from http import HTTPStatus
from pathlib import Path
from typing import BinaryIO, Callable, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from warcio.statusandheaders import StatusAndHeaders
from warcio.warcwriter import WARCWriter

from ..core.config import require
from ..http import HttpCall, HttpRequest, HttpResponse
from .base import CallRecorder, RecorderError
from .cdx import write_cdx


SOFTWARE_NAME = "heimdall"


def _status_line(response: HttpResponse) -> str:
    reason = response.reason
    if not reason:
        try:
            reason = HTTPStatus(response.status).phrase
        except ValueError:
            reason = ""
    return f"{response.status} {reason}".rstrip()


def _request_target(url: str) -> str:
    parts = urlsplit(url)
    target = parts.path or "/"
    if parts.query:
        target = f"{target}?{parts.query}"
    return target


def _request_headers(request: HttpRequest) -> List[Tuple[str, str]]:
    headers = request.headers.items()
    host = urlsplit(request.url).netloc
    if host and "host" not in request.headers:
        headers.insert(0, ("Host", host))
    return headers


class WARCCallRecorder(CallRecorder):
    """
    Recorder producing a WARC file and its CDX index.

    Settings:
        CALL_RECORDER__WARC_PATH: Output WARC file (required). A ``.gz``
            suffix selects per-record gzip compression.
        CALL_RECORDER__CDX_PATH: Output CDX file written on dispose (required)
    """

    name = "warc"

    def __init__(self, warning_listener: Optional[Callable[[str], None]] = None):
        super().__init__()
        self.warc_path: Optional[Path] = None
        self.cdx_path: Optional[Path] = None
        self.warning_listener = warning_listener or self._log_warning

        self._lock = threading.Lock()
        self._output: Optional[BinaryIO] = None
        self._writer: Optional[WARCWriter] = None
        self._disposed = False

    def initialise(self, properties: Mapping[str, str]):
        self.warc_path = Path(require(properties, "CALL_RECORDER__WARC_PATH"))
        self.cdx_path = Path(require(properties, "CALL_RECORDER__CDX_PATH"))

        try:
            self.warc_path.parent.mkdir(parents=True, exist_ok=True)
            self._output = open(self.warc_path, "wb")
            self._writer = WARCWriter(self._output, gzip=self.warc_path.suffix == ".gz")

            info = self._writer.create_warcinfo_record(
                self.warc_path.name, {"software": SOFTWARE_NAME}
            )
            self._writer.write_record(info)
        except OSError as e:
            raise RecorderError(f"Cannot open WARC output {self.warc_path}: {e}") from e

        self.logger.info("recorder_initialised", warc=str(self.warc_path), cdx=str(self.cdx_path))

    def record_call(self, call: HttpCall):
        if self._writer is None:
            raise RecorderError("Recorder used before initialise()")

        request, response = call.request, call.response
        warc_date = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

        request_payload = (request.body or b"") if request.has_body else b""
        request_record = self._writer.create_warc_record(
            request.url,
            "request",
            payload=io.BytesIO(request_payload),
            http_headers=StatusAndHeaders(
                f"{request.method} {_request_target(request.url)} HTTP/1.1",
                _request_headers(request),
                is_http_request=True,
            ),
            warc_headers_dict={"WARC-Date": warc_date},
        )

        response_record = self._writer.create_warc_record(
            request.url,
            "response",
            payload=io.BytesIO(response.body),
            http_headers=StatusAndHeaders(
                _status_line(response), response.headers.items(), protocol="HTTP/1.1"
            ),
            warc_headers_dict={
                "WARC-Date": warc_date,
                "WARC-Concurrent-To": request_record.rec_headers.get_header("WARC-Record-ID"),
            },
        )

        with self._lock:
            if self._disposed:
                raise RecorderError(f"Recorder already disposed, cannot record {request.url}")
            try:
                self._writer.write_record(request_record)
                self._writer.write_record(response_record)
            except OSError as e:
                self.logger.error("record_write_failed", url=request.url, error=str(e))
                raise RecorderError(f"Error writing call {request.url}: {e}") from e
            self.recorded_count += 1

        self.logger.debug("call_recorded", url=request.url, status=response.status)

    def dispose(self):
        with self._lock:
            if self._disposed or self._output is None:
                self._disposed = True
                return
            self._disposed = True
            try:
                self._output.close()
            except OSError as e:
                raise RecorderError(f"Cannot close WARC output {self.warc_path}: {e}") from e

        try:
            indexed = write_cdx(self.warc_path, self.cdx_path, on_warning=self.warning_listener)
        except OSError as e:
            raise RecorderError(f"Cannot write CDX index {self.cdx_path}: {e}") from e

        self.logger.info(
            "recorder_disposed",
            warc=str(self.warc_path),
            cdx=str(self.cdx_path),
            recorded=self.recorded_count,
            indexed=indexed,
        )

    def _log_warning(self, warning: str):
        self.logger.warning("cdx_warning", warning=warning)
