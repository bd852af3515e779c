"""
Unit tests for call recorders and the CDX writer.

Run with: pytest tests/unit/test_recorder.py -v
"""

import pytest
from warcio.archiveiterator import ArchiveIterator

from heimdall.core.errors import ConfigurationError
from heimdall.http import HttpCall, HttpRequest, HttpResponse
from heimdall.recorder import (
    LoggingCallRecorder,
    RecorderError,
    WARCCallRecorder,
    create_recorder,
    url_to_surt,
)
from heimdall.recorder.cdx import CDX_HEADER


def make_call(url="https://example.com/page", method="GET", body=None, status=200, headers=None):
    request = HttpRequest(method=method, url=url, headers=[("Accept", "*/*")], body=body)
    response = HttpResponse(
        status=status,
        headers=headers if headers is not None else [("Content-Type", "text/html; charset=utf-8")],
        body=b"<html>hello</html>",
    )
    return HttpCall(request, response)


def read_records(path):
    with open(path, "rb") as stream:
        return [
            (record.rec_type, record.rec_headers, record.http_headers, record.content_stream().read())
            for record in ArchiveIterator(stream)
        ]


@pytest.fixture
def warc_settings(tmp_path):
    return {
        "CALL_RECORDER__WARC_PATH": str(tmp_path / "out" / "crawl.warc"),
        "CALL_RECORDER__CDX_PATH": str(tmp_path / "out" / "crawl.cdx"),
    }


@pytest.fixture
def warc_recorder(warc_settings):
    recorder = WARCCallRecorder()
    recorder.initialise(warc_settings)
    return recorder


class TestWARCCallRecorder:
    """Test suite for WARCCallRecorder class"""

    def test_starts_with_warcinfo(self, warc_recorder, warc_settings):
        """Test the WARC begins with a warcinfo record naming the software"""
        warc_recorder.dispose()

        records = read_records(warc_settings["CALL_RECORDER__WARC_PATH"])

        assert records[0][0] == "warcinfo"
        assert b"software: heimdall" in records[0][3]

    def test_request_response_pair(self, warc_recorder, warc_settings):
        """Test each call writes a request then a response record"""
        warc_recorder.record_call(make_call())
        warc_recorder.dispose()

        records = read_records(warc_settings["CALL_RECORDER__WARC_PATH"])
        rec_type, request_headers, request_http, _ = records[1]
        response_type, response_headers, response_http, body = records[2]

        assert rec_type == "request"
        assert response_type == "response"
        assert request_headers.get_header("WARC-Target-URI") == "https://example.com/page"
        assert response_headers.get_header("WARC-Concurrent-To") == request_headers.get_header("WARC-Record-ID")
        assert response_headers.get_header("WARC-Date") == request_headers.get_header("WARC-Date")
        assert request_http.get_header("Host") == "example.com"
        assert response_http.get_statuscode() == "200"
        assert body == b"<html>hello</html>"
        assert warc_recorder.recorded_count == 1

    def test_post_body_recorded(self, warc_recorder, warc_settings):
        """Test POST request bodies are written into the request record"""
        warc_recorder.record_call(make_call(url="https://example.com/api", method="POST", body=b"a=1"))
        warc_recorder.dispose()

        records = read_records(warc_settings["CALL_RECORDER__WARC_PATH"])

        assert records[1][3] == b"a=1"

    def test_gzip_suffix(self, tmp_path):
        """Test a .gz WARC path writes a readable compressed archive"""
        recorder = WARCCallRecorder()
        recorder.initialise({
            "CALL_RECORDER__WARC_PATH": str(tmp_path / "crawl.warc.gz"),
            "CALL_RECORDER__CDX_PATH": str(tmp_path / "crawl.cdx"),
        })
        recorder.record_call(make_call())
        recorder.dispose()

        with open(tmp_path / "crawl.warc.gz", "rb") as f:
            assert f.read(2) == b"\x1f\x8b"
        assert [r[0] for r in read_records(tmp_path / "crawl.warc.gz")] == ["warcinfo", "request", "response"]

    def test_cdx_written_on_dispose(self, warc_recorder, warc_settings):
        """Test dispose derives one CDX line per response"""
        warc_recorder.record_call(make_call(url="https://www.example.com/b"))
        warc_recorder.record_call(make_call(
            url="https://example.com/a",
            status=302,
            headers=[("Location", "https://example.com/b")],
        ))
        warc_recorder.dispose()

        with open(warc_settings["CALL_RECORDER__CDX_PATH"], encoding="utf-8") as f:
            lines = f.read().splitlines()

        assert lines[0] == CDX_HEADER
        assert len(lines) == 3
        first = lines[1].split(" ")
        second = lines[2].split(" ")
        assert first[0] == "com,example)/a"
        assert first[4] == "302"
        assert first[6] == "https://example.com/b"
        assert first[10] == "crawl.warc"
        assert second[0] == "com,example)/b"
        assert second[3] == "text/html"
        assert len(second[1]) == 14

    def test_dispose_is_idempotent(self, warc_recorder):
        """Test a second dispose is a no-op"""
        warc_recorder.dispose()
        warc_recorder.dispose()

    def test_record_after_dispose_raises(self, warc_recorder):
        """Test calls arriving after dispose are rejected"""
        warc_recorder.dispose()

        with pytest.raises(RecorderError):
            warc_recorder.record_call(make_call())

    def test_record_before_initialise_raises(self):
        """Test an uninitialised recorder rejects calls"""
        with pytest.raises(RecorderError):
            WARCCallRecorder().record_call(make_call())

    def test_missing_cdx_path(self, tmp_path):
        """Test both output paths are required"""
        with pytest.raises(ConfigurationError, match="CALL_RECORDER__CDX_PATH"):
            WARCCallRecorder().initialise({"CALL_RECORDER__WARC_PATH": str(tmp_path / "crawl.warc")})


class TestLoggingCallRecorder:
    """Test suite for LoggingCallRecorder class"""

    def test_counts_calls(self):
        """Test every call is counted"""
        recorder = LoggingCallRecorder()
        recorder.initialise({})
        recorder.record_call(make_call())
        recorder.record_call(make_call(status=404))
        recorder.dispose()

        assert recorder.get_statistics() == {"recorded": 2}


class TestUrlToSurt:
    """Test suite for url_to_surt()"""

    def test_reverses_host_and_strips_www(self):
        """Test host labels are reversed and www dropped"""
        assert url_to_surt("https://www.Example.com/Path") == "com,example)/path"

    def test_sorts_query(self):
        """Test query parameters are sorted"""
        assert url_to_surt("http://example.com/s?b=2&a=1") == "com,example)/s?a=1&b=2"

    def test_keeps_non_default_port(self):
        """Test non-default ports stay in the key"""
        assert url_to_surt("http://example.com:8080/") == "com,example:8080)/"
        assert url_to_surt("https://example.com:443/") == "com,example)/"

    def test_two_label_www_host_kept(self):
        """Test www is only stripped from hosts with more than two labels"""
        assert url_to_surt("http://www.com/") == "com,www)/"


class TestRecorderRegistry:
    """Test suite for create_recorder()"""

    def test_registry_names(self):
        """Test recorders resolve by name and class name"""
        assert isinstance(create_recorder("warc"), WARCCallRecorder)
        assert isinstance(create_recorder("Logging"), LoggingCallRecorder)
        assert isinstance(
            create_recorder("heimdall.crawler.recorder.warc.WARCCallRecorder"), WARCCallRecorder
        )

    def test_unknown_selector(self):
        """Test an unknown recorder is a configuration error"""
        with pytest.raises(ConfigurationError, match="Unknown call recorder"):
            create_recorder("kafka")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
