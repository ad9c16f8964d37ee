from pathlib import Path
from unittest.mock import patch

import pytest

from config import DEFAULT_CSV_PATH, PipelineConfig
from errors import ConfigError
from models import BookFormat


def test_from_env_defaults() -> None:
    with patch.dict("os.environ", {}, clear=True):
        config = PipelineConfig.from_env()

    assert config.csv_path == Path(DEFAULT_CSV_PATH)
    assert config.book_format is BookFormat.PDF
    assert config.output_dir == Path("output")
    assert config.workers == 100
    assert config.on_missing_link == "skip"
    assert config.timeout == (10.0, 60.0)
    assert config.source_retry.max_attempts == 3


def test_from_env_reads_overrides() -> None:
    env = {
        "TEXTBOOKS_FORMAT": "EPUB",
        "TEXTBOOKS_WORKERS": "8",
        "TEXTBOOKS_MAX_ATTEMPTS": "2",
        "TEXTBOOKS_ON_MISSING_LINK": "Fail",
        "TEXTBOOKS_READ_TIMEOUT": "5.5",
    }
    with patch.dict("os.environ", env, clear=True):
        config = PipelineConfig.from_env()

    assert config.book_format is BookFormat.EPUB
    assert config.workers == 8
    assert config.download_retry.max_attempts == 2
    assert config.source_retry.max_attempts == 2
    assert config.on_missing_link == "fail"
    assert config.timeout == (10.0, 5.5)


@pytest.mark.parametrize("env", [
    {"TEXTBOOKS_FORMAT": "mobi"},
    {"TEXTBOOKS_WORKERS": "many"},
    {"TEXTBOOKS_WORKERS": "0"},
    {"TEXTBOOKS_ON_MISSING_LINK": "retry"},
    {"TEXTBOOKS_MAX_ATTEMPTS": "0"},
])
def test_from_env_rejects_invalid_values(env: dict[str, str]) -> None:
    with patch.dict("os.environ", env, clear=True), pytest.raises(ConfigError):
        PipelineConfig.from_env()
