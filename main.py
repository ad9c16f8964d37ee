"""CLI entrypoint for the free-textbook bulk downloader."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from config import MISSING_LINK_POLICIES, PipelineConfig
from errors import ConfigError, PipelineCancelled, PipelineError
from models import BookFormat
from pipeline import run_pipeline

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


class _BelowWarning(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING


def configure_logging(level: int = logging.INFO) -> None:
    """Progress lines go to stdout, retries and failures to stderr."""
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_BelowWarning())
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[stdout_handler, stderr_handler], force=True)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line flag parser."""
    parser = argparse.ArgumentParser(description="Download free textbooks listed in a metadata CSV")
    parser.add_argument(
        "--filepath",
        default=None,
        help="Path to the CSV file identifying free Springer textbooks",
    )
    parser.add_argument(
        "--format",
        default=None,
        help="pdf or epub (case-insensitive). Note not all texts are available as epub.",
    )
    parser.add_argument("--output-dir", default=None, help="Directory downloaded files are written to")
    parser.add_argument("--workers", type=int, default=None, help="Number of concurrent download workers")
    parser.add_argument(
        "--on-missing-link",
        choices=MISSING_LINK_POLICIES,
        default=None,
        help="What to do when a landing page has no link for the format: skip the book or fail the run",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve content URLs and log them without downloading",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Merge CLI overrides on top of the environment-derived config."""
    config = PipelineConfig.from_env()
    overrides: dict[str, object] = {}
    if args.filepath is not None:
        overrides["csv_path"] = Path(args.filepath)
    if args.format is not None:
        overrides["book_format"] = BookFormat.parse(args.format)
    if args.output_dir is not None:
        overrides["output_dir"] = Path(args.output_dir)
    if args.workers is not None:
        overrides["workers"] = args.workers
    if args.on_missing_link is not None:
        overrides["on_missing_link"] = args.on_missing_link
    if args.dry_run:
        overrides["dry_run"] = True
    return replace(config, **overrides) if overrides else config


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute the pipeline; returns the process exit code."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = build_config(args)
    except ConfigError as exc:
        parser.error(str(exc))

    cancel = threading.Event()
    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, lambda *_: cancel.set())

    try:
        summary = run_pipeline(config, cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        logging.warning("Interrupted; cancelling outstanding downloads")
        return EXIT_INTERRUPTED
    except PipelineCancelled as exc:
        logging.warning("Run cancelled: %s", exc)
        return EXIT_INTERRUPTED
    except PipelineError as exc:
        logging.error("Run failed: %s", exc)
        return EXIT_FAILURE

    if summary.failed:
        logging.warning("%s textbook(s) could not be downloaded", summary.failed)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
