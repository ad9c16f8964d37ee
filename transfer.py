"""Streaming transfer from a content URL into a local file.

A fetch thread and a persist thread are joined by a bounded ``Relay`` of byte
chunks, so at most ``relay_capacity`` chunks of the payload sit in memory at
any time. Bytes land in a ``.part`` sibling that replaces the destination only
after a complete transfer, so a failed download leaves nothing behind.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import requests

from errors import PipelineCancelled, RelayClosedError
from resilience import RetryPolicy, open_for_writing, open_url_stream, retry_call

LOGGER = logging.getLogger(__name__)

# How often blocked relay calls wake up to check for cancellation.
_CANCEL_POLL_SECONDS = 0.1

# Downloads are written here and renamed into place only once complete.
PARTIAL_SUFFIX = ".part"


class Relay:
    """Bounded in-memory pipe of byte chunks between one writer and one reader."""

    def __init__(self, capacity: int, cancel: threading.Event | None = None) -> None:
        if capacity < 1:
            raise ValueError("relay capacity must be positive")
        self.capacity = capacity
        self.peak = 0
        self._cancel = cancel
        self._chunks: deque[bytes] = deque()
        self._cond = threading.Condition()
        self._write_closed = False
        self._write_error: BaseException | None = None
        self._read_closed = False
        self._read_error: BaseException | None = None

    def write(self, chunk: bytes) -> None:
        """Append a chunk, blocking while the relay is full."""
        with self._cond:
            while len(self._chunks) >= self.capacity and not self._read_closed:
                self._wait()
            if self._read_closed:
                raise RelayClosedError(f"reader closed the relay: {self._read_error}")
            if self._write_closed:
                raise RelayClosedError("write on a relay already closed by its writer")
            self._chunks.append(chunk)
            self.peak = max(self.peak, len(self._chunks))
            self._cond.notify_all()

    def read(self) -> bytes | None:
        """Pop the next chunk; None once the writer closed cleanly and the relay is drained.

        Raises the writer's close error after buffered chunks are consumed.
        """
        with self._cond:
            while not self._chunks and not self._write_closed:
                self._wait()
            if self._chunks:
                chunk = self._chunks.popleft()
                self._cond.notify_all()
                return chunk
            if self._write_error is not None:
                raise self._write_error
            return None

    def close(self, error: BaseException | None = None) -> None:
        """Close the write side; error, if given, is raised to the reader."""
        with self._cond:
            if not self._write_closed:
                self._write_closed = True
                self._write_error = error
            self._cond.notify_all()

    def close_reader(self, error: BaseException | None = None) -> None:
        """Close the read side so that pending and later writes fail."""
        with self._cond:
            if not self._read_closed:
                self._read_closed = True
                self._read_error = error
            self._chunks.clear()
            self._cond.notify_all()

    def _wait(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise PipelineCancelled("relay wait cancelled")
        self._cond.wait(_CANCEL_POLL_SECONDS if self._cancel is not None else None)


def transfer(
    content_url: str,
    destination: str | Path,
    *,
    session: requests.Session,
    policy: RetryPolicy,
    timeout: float | tuple[float, float],
    chunk_size: int,
    relay_capacity: int,
    cancel: threading.Event | None = None,
) -> None:
    """Stream content_url into destination, restarting from byte zero on any failure.

    The destination only appears once every byte arrived; a failed attempt
    removes its partial file.

    Raises:
        RetryExhaustedError: every attempt failed.
        PipelineCancelled: cancel was set while the transfer was in progress.
    """

    def attempt() -> None:
        _transfer_once(
            content_url,
            destination,
            session=session,
            timeout=timeout,
            chunk_size=chunk_size,
            relay=Relay(relay_capacity, cancel),
        )

    retry_call(
        attempt,
        policy=policy,
        description=f"Downloading {content_url}",
        cancel=cancel,
    )


def _transfer_once(
    content_url: str,
    destination: str | Path,
    *,
    session: requests.Session,
    timeout: float | tuple[float, float],
    chunk_size: int,
    relay: Relay,
) -> None:
    destination = Path(destination)
    partial = partial_path(destination)

    def fetch() -> None:
        try:
            with open_url_stream(session, content_url, timeout=timeout) as response:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        relay.write(chunk)
        except BaseException as exc:
            relay.close(exc)
            raise
        relay.close()

    def persist() -> None:
        try:
            with open_for_writing(partial) as fh:
                while True:
                    chunk = relay.read()
                    if chunk is None:
                        break
                    fh.write(chunk)
        except BaseException as exc:
            relay.close_reader(exc)
            raise

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="transfer") as executor:
        fetch_future = executor.submit(fetch)
        persist_future = executor.submit(persist)
        errors = [f.exception() for f in (fetch_future, persist_future)]

    try:
        _raise_first_root_error(errors)
        partial.replace(destination)
    except BaseException:
        if partial.exists():
            partial.unlink()
        raise


def partial_path(destination: Path) -> Path:
    """Sibling path a download is streamed into until it completes."""
    return destination.with_name(destination.name + PARTIAL_SUFFIX)


def _raise_first_root_error(errors: list[BaseException | None]) -> None:
    """Re-raise the originating failure, preferring it over relay-closed echoes."""
    failures = [err for err in errors if err is not None]
    if not failures:
        return
    for err in failures:
        if not isinstance(err, RelayClosedError):
            raise err
    raise failures[0]
