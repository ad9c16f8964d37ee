"""Runtime configuration for the textbook downloader.

Values come from the environment (optionally populated from a ``.env`` file by
``python-dotenv``) and can be overridden by CLI flags in ``main.py``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from errors import ConfigError
from models import BookFormat
from resilience import RetryPolicy

DEFAULT_CSV_PATH = "csv/Free+English+textbooks.csv"
DEFAULT_OUTPUT_DIR = "output"
DEFAULT_WORKERS = 100
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_INITIAL_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 30.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 60.0
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_RELAY_CAPACITY = 16

MISSING_LINK_POLICIES = ("skip", "fail")


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable settings for one pipeline run."""

    csv_path: Path = Path(DEFAULT_CSV_PATH)
    book_format: BookFormat = BookFormat.PDF
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    workers: int = DEFAULT_WORKERS
    on_missing_link: str = "skip"
    dry_run: bool = False
    source_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_attempts=3))
    landing_page_retry: RetryPolicy = field(default_factory=RetryPolicy)
    download_retry: RetryPolicy = field(default_factory=RetryPolicy)
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    relay_capacity: int = DEFAULT_RELAY_CAPACITY

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ConfigError(f"workers must be >= 1, got {self.workers}")
        if self.on_missing_link not in MISSING_LINK_POLICIES:
            raise ConfigError(
                f"on_missing_link '{self.on_missing_link}' must be one of {', '.join(MISSING_LINK_POLICIES)}"
            )
        if self.chunk_size < 1 or self.relay_capacity < 1:
            raise ConfigError("chunk_size and relay_capacity must be positive")

    @property
    def timeout(self) -> tuple[float, float]:
        """(connect, read) timeout tuple accepted by requests."""
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Build a config from TEXTBOOKS_* environment variables."""
        max_attempts = _env_int("TEXTBOOKS_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
        retry = RetryPolicy(
            max_attempts=max_attempts,
            initial_delay=_env_float("TEXTBOOKS_RETRY_INITIAL_DELAY", DEFAULT_RETRY_INITIAL_DELAY),
            max_delay=_env_float("TEXTBOOKS_RETRY_MAX_DELAY", DEFAULT_RETRY_MAX_DELAY),
        )
        if max_attempts < 1:
            raise ConfigError(f"TEXTBOOKS_MAX_ATTEMPTS must be >= 1, got {max_attempts}")

        return cls(
            csv_path=Path(os.getenv("TEXTBOOKS_CSV_PATH", DEFAULT_CSV_PATH)),
            book_format=BookFormat.parse(os.getenv("TEXTBOOKS_FORMAT", "pdf")),
            output_dir=Path(os.getenv("TEXTBOOKS_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)),
            workers=_env_int("TEXTBOOKS_WORKERS", DEFAULT_WORKERS),
            on_missing_link=os.getenv("TEXTBOOKS_ON_MISSING_LINK", "skip").strip().lower(),
            source_retry=replace(retry, max_attempts=min(max_attempts, 3)),
            landing_page_retry=retry,
            download_retry=retry,
            connect_timeout=_env_float("TEXTBOOKS_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
            read_timeout=_env_float("TEXTBOOKS_READ_TIMEOUT", DEFAULT_READ_TIMEOUT),
            chunk_size=_env_int("TEXTBOOKS_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            relay_capacity=_env_int("TEXTBOOKS_RELAY_CAPACITY", DEFAULT_RELAY_CAPACITY),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
