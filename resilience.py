"""Retry wrapper and single-attempt openers used by every pipeline stage."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, TypeVar

import requests

from errors import PipelineCancelled, RetryExhaustedError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_FRAME_RULE = "-" * 25


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Capped exponential backoff for one call site."""

    max_attempts: int = 5
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = self.initial_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


def format_error_frame(exc: BaseException) -> str:
    """Render an error as the framed block written to the error stream."""
    return f"{_FRAME_RULE}\nERROR\n{_FRAME_RULE}\n{exc}"


def retry_call(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    description: str,
    cancel: threading.Event | None = None,
) -> T:
    """Run operation until it succeeds or policy.max_attempts is reached.

    Every failure is logged as a framed block. Between attempts the call waits
    on the cancellation event, so a cancelled run stops retrying immediately.
    Cancellation is never retried.

    Raises:
        RetryExhaustedError: after the last attempt failed; chained to that failure.
        PipelineCancelled: if cancel is set before or between attempts.
    """
    last_error: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise PipelineCancelled(f"{description} cancelled")
        try:
            return operation()
        except PipelineCancelled:
            raise
        except Exception as exc:  # any failure class is retried the same way
            last_error = exc
            LOGGER.warning(
                "%s failed on attempt %s/%s\n%s",
                description,
                attempt,
                policy.max_attempts,
                format_error_frame(exc),
            )
            if attempt >= policy.max_attempts:
                break
            _sleep(policy.delay_for(attempt), cancel, description)

    raise RetryExhaustedError(description, policy.max_attempts, last_error) from last_error


def _sleep(seconds: float, cancel: threading.Event | None, description: str) -> None:
    if seconds <= 0:
        return
    if cancel is None:
        time.sleep(seconds)
    elif cancel.wait(seconds):
        raise PipelineCancelled(f"{description} cancelled")


def open_url_stream(
    session: requests.Session,
    url: str,
    *,
    timeout: float | tuple[float, float],
) -> requests.Response:
    """Open a streaming GET for url; non-2xx statuses raise requests.HTTPError."""
    response = session.get(url, stream=True, timeout=timeout)
    try:
        response.raise_for_status()
    except requests.HTTPError:
        response.close()
        raise
    return response


def open_for_reading(path: str | Path) -> IO[str]:
    """Open a local text file suitable for the csv module."""
    return Path(path).open(newline="", encoding="utf-8")


def open_for_writing(path: str | Path) -> IO[bytes]:
    """Open, create or truncate a local file for binary writing."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target.open("wb")
