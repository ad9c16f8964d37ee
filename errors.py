"""Exception types raised by the downloader."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for every error the downloader raises on purpose."""


class ConfigError(PipelineError):
    """Invalid configuration value supplied via env or CLI."""


class RecordSourceError(PipelineError):
    """The metadata CSV could not be read or contained a malformed row.

    Fatal for the run: no further records are produced, but records already
    handed to workers are still processed.
    """


class RetryExhaustedError(PipelineError):
    """An operation kept failing until its retry policy ran out of attempts."""

    def __init__(self, description: str, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class ContentLinkNotFoundError(PipelineError):
    """No download link for the requested format exists on a landing page."""


class RelayClosedError(PipelineError):
    """The other side of a relay closed it before the transfer finished."""


class PipelineCancelled(PipelineError):
    """The run was cancelled while an operation was waiting."""
