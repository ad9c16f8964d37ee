"""Landing-page scraping to find a textbook's content URL."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from urllib.parse import quote, urlsplit, urlunsplit

import requests

from errors import PipelineCancelled
from models import BookFormat, Record, link_pattern
from resilience import RetryPolicy, open_url_stream, retry_call

LOGGER = logging.getLogger(__name__)

LANDING_PAGE_CHUNK_SIZE = 8192

# Characters left as-is in a content path; "%" keeps existing escapes intact.
_PATH_SAFE = "/%:@!$&'()*+,;=~"


def resolve_content_url(
    record: Record,
    fmt: BookFormat,
    *,
    session: requests.Session,
    policy: RetryPolicy,
    timeout: float | tuple[float, float],
    cancel: threading.Event | None = None,
) -> str | None:
    """Return the absolute content URL for record in fmt, or None if the page has no link.

    The landing page is scanned line by line; a link split across lines never
    matches. Any network or read error restarts the scan from the top of the
    page under the retry policy.
    """
    pattern = link_pattern(fmt)

    def scan_landing_page() -> str | None:
        with open_url_stream(session, record.landing_page_url, timeout=timeout) as response:
            for raw_line in iter_terminated_lines(response.iter_content(chunk_size=LANDING_PAGE_CHUNK_SIZE)):
                if cancel is not None and cancel.is_set():
                    raise PipelineCancelled(f"resolving {record.landing_page_url} cancelled")
                line = raw_line.decode("utf-8", errors="replace")
                match = pattern.search(line)
                if match:
                    return content_url_from_path(record.landing_page_url, match.group(1))
        return None

    content_url = retry_call(
        scan_landing_page,
        policy=policy,
        description=f"Fetching landing page {record.landing_page_url}",
        cancel=cancel,
    )
    if content_url is None:
        LOGGER.warning(
            "Can't find content url for textbook %s for format %s", record, fmt.display_name
        )
    return content_url


def content_url_from_path(landing_page_url: str, path: str) -> str:
    """Swap the landing page URL's path for path and drop its query string.

    path is used as a literal path: characters such as ``?`` and ``#`` are
    percent-escaped rather than starting a query or fragment.
    """
    parts = urlsplit(landing_page_url)
    return urlunsplit((parts.scheme, parts.netloc, quote(path, safe=_PATH_SAFE), "", parts.fragment))


def iter_terminated_lines(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Yield each line-feed terminated line, without its line feed.

    Trailing bytes after the last line feed are not a line and are dropped.
    """
    pending = b""
    for chunk in chunks:
        pending += chunk
        *lines, pending = pending.split(b"\n")
        yield from lines
