"""
CDX index writer.

Re-reads a finished WARC and writes a classic 11-field CDX file::

     CDX N b a m s k r M S V g

(massaged URL, date, original URL, mime type, status, digest, redirect,
meta tags, record length, record offset, WARC file name). One line is
written per captured record (``response``, ``resource`` and ``revisit``),
sorted by key so the index can be binary searched.
"""

from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from warcio.archiveiterator import ArchiveIterator
from warcio.timeutils import iso_date_to_timestamp


CDX_HEADER = " CDX N b a m s k r M S V g"

CAPTURE_TYPES = ("response", "resource", "revisit")

_DEFAULT_PORTS = {"http": 80, "https": 443}


def url_to_surt(url: str) -> str:
    """Convert a URL to SURT (Sort-friendly URI Reordering Transform) form.

    Example: https://www.example.com/Path?b=2&a=1 -> com,example)/path?a=1&b=2

    Args:
        url: Original URL.

    Returns:
        SURT formatted key.
    """
    parts = urlsplit(url)

    if parts.scheme not in _DEFAULT_PORTS:
        return url.lower()

    host = (parts.hostname or "").strip(".")
    labels = host.split(".")
    if len(labels) > 2 and labels[0].startswith("www"):
        labels = labels[1:]
    labels.reverse()

    key = ",".join(labels)
    if parts.port and parts.port != _DEFAULT_PORTS[parts.scheme]:
        key = f"{key}:{parts.port}"

    path = parts.path or "/"
    query = ""
    if parts.query:
        query = "?" + urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))

    return f"{key}){path}{query}".lower()


def _mime_type(record) -> str:
    if record.http_headers is not None:
        content_type = record.http_headers.get_header("Content-Type")
    else:
        content_type = record.rec_headers.get_header("Content-Type")
    if not content_type:
        return "-"
    return content_type.split(";", 1)[0].strip().lower() or "-"


def _status(record) -> str:
    if record.http_headers is None:
        return "-"
    return record.http_headers.get_statuscode() or "-"


def _redirect(record) -> str:
    if record.http_headers is None:
        return "-"
    status = record.http_headers.get_statuscode() or ""
    if status.startswith("3"):
        return record.http_headers.get_header("Location") or "-"
    return "-"


def _digest(record) -> str:
    digest = record.rec_headers.get_header("WARC-Payload-Digest")
    if not digest:
        return "-"
    return digest.split(":", 1)[-1]


def write_cdx(
    warc_path: Path,
    cdx_path: Path,
    on_warning: Optional[Callable[[str], None]] = None,
) -> int:
    """
    Index a WARC file.

    Records that cannot be indexed are skipped and reported through
    ``on_warning``.

    Args:
        warc_path: WARC file to read
        cdx_path: CDX file to (re)write
        on_warning: Callback receiving a message per skipped record

    Returns:
        Number of index lines written

    Raises:
        OSError: If either file cannot be opened
    """
    filename = Path(warc_path).name
    lines: List[str] = []

    with open(warc_path, "rb") as stream:
        records = ArchiveIterator(stream)
        for record in records:
            if record.rec_type not in CAPTURE_TYPES:
                continue

            uri = record.rec_headers.get_header("WARC-Target-URI")
            date = record.rec_headers.get_header("WARC-Date")

            if not uri or not date:
                if on_warning:
                    on_warning(f"Skipping {record.rec_type} record without target URI or date")
                continue

            fields = [
                url_to_surt(uri),
                iso_date_to_timestamp(date),
                uri,
                _mime_type(record),
                _status(record),
                _digest(record),
                _redirect(record),
                "-",
                str(records.get_record_length()),
                str(records.get_record_offset()),
                filename,
            ]
            lines.append(" ".join(field.replace(" ", "%20") for field in fields))

    lines.sort()

    with open(cdx_path, "w", encoding="utf-8") as f:
        f.write(CDX_HEADER + "\n")
        for line in lines:
            f.write(line + "\n")

    return len(lines)
