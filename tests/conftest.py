"""Shared fakes for tests that would otherwise hit the network."""

from __future__ import annotations

import csv
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import requests

from resilience import RetryPolicy

FAST_RETRY = RetryPolicy(max_attempts=2, initial_delay=0.0, max_delay=0.0)


class FakeResponse:
    """Just enough of requests.Response for streaming GETs."""

    def __init__(
        self,
        body: bytes = b"",
        status_code: int = 200,
        fail_after_chunks: int | None = None,
    ) -> None:
        self.body = body
        self.status_code = status_code
        self.fail_after_chunks = fail_after_chunks
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for index, start in enumerate(range(0, len(self.body), chunk_size)):
            if self.fail_after_chunks is not None and index >= self.fail_after_chunks:
                raise requests.ConnectionError("connection reset while reading")
            yield self.body[start:start + chunk_size]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FakeSession:
    """Route GETs by URL to queued responses; the last response for a URL repeats."""

    def __init__(self, routes: dict[str, FakeResponse | list[FakeResponse] | Callable[[], FakeResponse]]) -> None:
        self._routes = {url: (r if isinstance(r, list) or callable(r) else [r]) for url, r in routes.items()}
        self._lock = threading.Lock()
        self.calls: list[str] = []

    def get(self, url: str, stream: bool = False, timeout: object = None) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
            route = self._routes.get(url)
            if route is None:
                return FakeResponse(status_code=404)
            if callable(route):
                return route()
            return route.pop(0) if len(route) > 1 else route[0]


def make_row(title: str = "", identifier: str = "", landing_url: str = "", author: str = "") -> list[str]:
    """Build a 22-column metadata row with the recognised fields filled in."""
    row = [""] * 22
    row[0] = title
    row[1] = author
    row[7] = identifier
    row[17] = f"http://doi.org/{identifier}"
    row[18] = landing_url
    return row


def write_csv(path: Path, rows: list[list[str]]) -> Path:
    header = [f"column_{i}" for i in range(22)]
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        writer.writerows(rows)
    return path


def landing_page(path: str | None, fmt_name: str = "PDF") -> bytes:
    """HTML for a landing page that links to path, or has no download link at all."""
    lines = [
        "<html><head><title>Book</title></head><body>",
        '<div class="cta-button-container">',
    ]
    if path is not None:
        lines.append(
            f'  <a href="{path}" title="Download this book in {fmt_name} format" class="c-button">'
        )
    lines += ["</div>", "</body></html>", ""]
    return "\n".join(lines).encode("utf-8")


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return FAST_RETRY
