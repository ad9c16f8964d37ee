"""Shared typed models for the downloader."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from errors import ConfigError

_SEPARATOR_REPLACEMENT = "_"


@dataclass(frozen=True, slots=True)
class Record:
    """One textbook row from the metadata CSV."""

    title: str
    author: str
    content_identifier: str
    doi_url: str
    landing_page_url: str

    def __str__(self) -> str:
        return (
            f"{{Title: '{self.title}', Author: '{self.author}', "
            f"ISBN: {self.content_identifier}, URL: {self.landing_page_url}}}"
        )


class BookFormat(Enum):
    """Downloadable file formats offered on a landing page."""

    PDF = "pdf"
    EPUB = "epub"

    @property
    def display_name(self) -> str:
        return self.value.upper()

    @property
    def extension(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, raw: str) -> BookFormat:
        """Parse a case-insensitive format name, raising ConfigError otherwise."""
        value = (raw or "").strip().lower()
        for fmt in cls:
            if fmt.value == value:
                return fmt
        raise ConfigError(f"format '{raw}' must be pdf or epub")


def link_pattern(fmt: BookFormat) -> re.Pattern[str]:
    """Return the landing-page pattern whose first group is the content path."""
    return re.compile(
        rf'a href="(.*)" title="Download this book in {re.escape(fmt.display_name)} format"'
    )


def sanitize_filename(name: str) -> str:
    """Replace every path-separator character so the name stays one path segment."""
    separators = {"/", os.sep}
    if os.altsep:
        separators.add(os.altsep)
    for sep in separators:
        name = name.replace(sep, _SEPARATOR_REPLACEMENT)
    return name


def destination_path(record: Record, fmt: BookFormat, output_dir: str | Path) -> Path:
    """Derive the local file path a record's content is written to."""
    filename = sanitize_filename(
        f"{record.title} ({record.content_identifier}).{fmt.extension}"
    )
    return Path(output_dir) / filename
