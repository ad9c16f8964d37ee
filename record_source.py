"""Parse the textbook metadata CSV into Record objects."""

from __future__ import annotations

import csv
import logging
import threading
from collections.abc import Iterator
from pathlib import Path

from errors import RecordSourceError, RetryExhaustedError
from models import Record
from resilience import RetryPolicy, open_for_reading, retry_call

LOGGER = logging.getLogger(__name__)

EXPECTED_COLUMNS = 22

# Column positions in the Springer free-textbook export.
TITLE_COLUMN = 0
AUTHOR_COLUMN = 1
IDENTIFIER_COLUMN = 7
DOI_URL_COLUMN = 17
LANDING_PAGE_COLUMN = 18


def read_records(
    path: str | Path,
    *,
    policy: RetryPolicy,
    cancel: threading.Event | None = None,
) -> Iterator[Record]:
    """Lazily yield one Record per data row of the CSV at path.

    The first row is the header; it is validated for width but not yielded.

    Raises:
        RecordSourceError: the file cannot be opened, a row cannot be decoded,
            or a row does not have exactly EXPECTED_COLUMNS fields.
    """
    try:
        fh = retry_call(
            lambda: open_for_reading(path),
            policy=policy,
            description=f"Opening metadata CSV {path}",
            cancel=cancel,
        )
    except RetryExhaustedError as exc:
        raise RecordSourceError(f"could not open {path}: {exc.last_error}") from exc

    with fh:
        reader = csv.reader(fh)
        row_index = 0
        while True:
            try:
                row = next(reader)
            except StopIteration:
                break
            except (csv.Error, UnicodeDecodeError) as exc:
                raise RecordSourceError(f"failed to read row {row_index}: {exc}") from exc

            if len(row) != EXPECTED_COLUMNS:
                raise RecordSourceError(f"Unexpected number of columns in row {row_index}: {row}")

            if row_index > 0:
                yield _row_to_record(row)
            row_index += 1

    LOGGER.debug("Finished reading %s data rows from %s", max(row_index - 1, 0), path)


def _row_to_record(row: list[str]) -> Record:
    return Record(
        title=row[TITLE_COLUMN],
        author=row[AUTHOR_COLUMN],
        content_identifier=row[IDENTIFIER_COLUMN],
        doi_url=row[DOI_URL_COLUMN],
        landing_page_url=row[LANDING_PAGE_COLUMN],
    )
