"""Worker pool that turns metadata records into downloaded files."""

from __future__ import annotations

import logging
import queue
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter

from config import PipelineConfig
from errors import (
    ContentLinkNotFoundError,
    PipelineCancelled,
    PipelineError,
    RecordSourceError,
    RetryExhaustedError,
)
from models import Record, destination_path
from record_source import read_records
from resolver import resolve_content_url
from transfer import transfer

LOGGER = logging.getLogger(__name__)

USER_AGENT = "textbook-downloader/0.1"

# How often blocked queue calls wake up to check for cancellation.
_QUEUE_POLL_SECONDS = 0.1

# Placed on the handoff queue once per worker after the source is exhausted.
_STOP = object()


class Outcome(Enum):
    """What happened to one record."""

    DOWNLOADED = "downloaded"
    RESOLVED = "resolved"  # dry run: content URL found, nothing transferred
    SKIPPED = "skipped"  # no link for the requested format
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Per-run outcome counts."""

    downloaded: int
    skipped: int
    failed: int
    resolved: int = 0
    dry_run: bool = False


def build_session(pool_size: int) -> requests.Session:
    """Create a shared HTTP session whose connection pool fits the worker count."""
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class DownloadPipeline:
    """Fan a single record stream out to a fixed number of download workers.

    One producer thread reads the CSV and hands records to ``config.workers``
    worker threads through a one-slot queue, so the reader never runs more than
    one record ahead of the workers. A source error stops production but lets
    workers finish what was already handed over; ``run`` raises it afterwards.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        session: requests.Session | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.session = session or build_session(config.workers)
        self.cancel = cancel or threading.Event()
        self._handoff: queue.Queue[object] = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._source_error: RecordSourceError | None = None
        self._terminal_error: PipelineError | None = None
        self._outcomes: Counter[Outcome] = Counter()

    def run(self, source_path: str | Path | None = None) -> RunSummary:
        """Process every record in source_path and return outcome counts.

        Raises:
            RecordSourceError: the CSV was unreadable or malformed (after draining).
            ContentLinkNotFoundError: a link was missing under the "fail" policy.
            PipelineCancelled: the cancellation event was set.
        """
        source_path = Path(source_path) if source_path is not None else self.config.csv_path
        LOGGER.info(
            "Starting run: source=%s format=%s workers=%s output_dir=%s dry_run=%s",
            source_path,
            self.config.book_format.display_name,
            self.config.workers,
            self.config.output_dir,
            self.config.dry_run,
        )

        with ThreadPoolExecutor(
            max_workers=self.config.workers + 1, thread_name_prefix="pipeline"
        ) as executor:
            futures = [executor.submit(self._produce, source_path)]
            futures += [executor.submit(self._work) for _ in range(self.config.workers)]
            try:
                for future in futures:
                    future.result()
            except BaseException:
                # Ctrl-C lands here; workers must see it before the executor joins them.
                self.cancel.set()
                raise

        summary = RunSummary(
            downloaded=self._outcomes[Outcome.DOWNLOADED],
            skipped=self._outcomes[Outcome.SKIPPED],
            failed=self._outcomes[Outcome.FAILED],
            resolved=self._outcomes[Outcome.RESOLVED],
            dry_run=self.config.dry_run,
        )
        LOGGER.info(
            "Run complete. downloaded=%s resolved=%s skipped=%s failed=%s",
            summary.downloaded,
            summary.resolved,
            summary.skipped,
            summary.failed,
        )

        if self._source_error is not None:
            raise self._source_error
        if self._terminal_error is not None:
            raise self._terminal_error
        if self.cancel.is_set():
            raise PipelineCancelled("run cancelled")
        return summary

    def _produce(self, source_path: Path) -> None:
        try:
            for record in read_records(
                source_path, policy=self.config.source_retry, cancel=self.cancel
            ):
                self._put(record)
        except RecordSourceError as exc:
            LOGGER.error("Record source failed: %s", exc)
            self._source_error = exc
        except PipelineCancelled:
            LOGGER.info("Record source stopped: run cancelled")
        finally:
            for _ in range(self.config.workers):
                if not self._put(_STOP, stopping=True):
                    break

    def _put(self, item: object, stopping: bool = False) -> bool:
        while True:
            if self.cancel.is_set():
                if stopping:
                    return False
                raise PipelineCancelled("record handoff cancelled")
            try:
                self._handoff.put(item, timeout=_QUEUE_POLL_SECONDS)
                return True
            except queue.Full:
                continue

    def _work(self) -> None:
        while not self.cancel.is_set():
            try:
                item = self._handoff.get(timeout=_QUEUE_POLL_SECONDS)
            except queue.Empty:
                continue
            if item is _STOP:
                return
            try:
                self._process(item)
            except PipelineCancelled:
                return
            except Exception as exc:  # broad by design so one bad record never stops a worker
                LOGGER.exception("Failed processing textbook %s: %s", item, exc)
                self._count(Outcome.FAILED)

    def _process(self, record: Record) -> None:
        config = self.config
        try:
            content_url = resolve_content_url(
                record,
                config.book_format,
                session=self.session,
                policy=config.landing_page_retry,
                timeout=config.timeout,
                cancel=self.cancel,
            )
        except RetryExhaustedError:
            LOGGER.exception("Failed resolving content url for textbook %s", record)
            self._count(Outcome.FAILED)
            return

        if content_url is None:
            self._handle_missing_link(record)
            return

        path = destination_path(record, config.book_format, config.output_dir)
        if config.dry_run:
            LOGGER.info("[dry-run] Would download %s -> %s", content_url, path)
            self._count(Outcome.RESOLVED)
            return

        LOGGER.info("Download begins:\t%s", path)
        try:
            transfer(
                content_url,
                path,
                session=self.session,
                policy=config.download_retry,
                timeout=config.timeout,
                chunk_size=config.chunk_size,
                relay_capacity=config.relay_capacity,
                cancel=self.cancel,
            )
        except RetryExhaustedError:
            LOGGER.exception("Download failed:\t%s", path)
            self._count(Outcome.FAILED)
            return
        LOGGER.info("Download complete:\t%s", path)
        self._count(Outcome.DOWNLOADED)

    def _handle_missing_link(self, record: Record) -> None:
        self._count(Outcome.SKIPPED)
        if self.config.on_missing_link != "fail":
            return
        with self._lock:
            if self._terminal_error is None:
                self._terminal_error = ContentLinkNotFoundError(
                    f"no {self.config.book_format.display_name} link for textbook {record}"
                )
        self.cancel.set()

    def _count(self, outcome: Outcome) -> None:
        with self._lock:
            self._outcomes[outcome] += 1


def run_pipeline(
    config: PipelineConfig,
    *,
    session: requests.Session | None = None,
    cancel: threading.Event | None = None,
) -> RunSummary:
    """Run one download pass over config.csv_path."""
    return DownloadPipeline(config, session=session, cancel=cancel).run()
