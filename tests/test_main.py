"""Tests for the CLI entrypoint (main.main)."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest

import main
from errors import PipelineCancelled, RecordSourceError
from models import BookFormat
from pipeline import RunSummary


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "TEXTBOOKS_FORMAT",
        "TEXTBOOKS_WORKERS",
        "TEXTBOOKS_CSV_PATH",
        "TEXTBOOKS_ON_MISSING_LINK",
        "TEXTBOOKS_MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(main, "load_dotenv", lambda: None)
    monkeypatch.setattr(main.signal, "signal", lambda *args: None)


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    """main() reconfigures the root logger; undo it so other tests keep caplog working."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_cli_flags_override_config() -> None:
    with patch("main.run_pipeline", return_value=RunSummary(1, 0, 0)) as mock_run:
        code = main.main([
            "--filepath", "books.csv",
            "--format", "EPUB",
            "--workers", "3",
            "--output-dir", "out",
            "--on-missing-link", "fail",
        ])

    assert code == main.EXIT_OK
    config = mock_run.call_args.args[0]
    assert config.csv_path == Path("books.csv")
    assert config.book_format is BookFormat.EPUB
    assert config.workers == 3
    assert config.output_dir == Path("out")
    assert config.on_missing_link == "fail"


def test_invalid_format_is_usage_error() -> None:
    with patch("main.run_pipeline") as mock_run, pytest.raises(SystemExit) as excinfo:
        main.main(["--format", "mobi"])

    assert excinfo.value.code == main.EXIT_USAGE
    mock_run.assert_not_called()


def test_source_error_exits_with_failure() -> None:
    with patch("main.run_pipeline", side_effect=RecordSourceError("Unexpected number of columns in row 3")):
        assert main.main([]) == main.EXIT_FAILURE


def test_cancelled_run_exits_as_interrupted() -> None:
    with patch("main.run_pipeline", side_effect=PipelineCancelled("run cancelled")):
        assert main.main([]) == main.EXIT_INTERRUPTED


def test_partial_failures_still_exit_ok() -> None:
    with patch("main.run_pipeline", return_value=RunSummary(downloaded=3, skipped=1, failed=2)):
        assert main.main(["--dry-run"]) == main.EXIT_OK
