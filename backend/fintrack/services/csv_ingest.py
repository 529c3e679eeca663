"""Business logic for turning raw CSV payloads into header-keyed rows."""

from __future__ import annotations

import csv
import io
import logging

from fintrack.core.exceptions import CsvParseError

logger = logging.getLogger(__name__)

# Header is file row 1, so the first data row is row 2
FIRST_DATA_ROW = 2


def decode_csv_bytes(raw: bytes) -> str:
    """Decode an uploaded file as UTF-8 (a leading BOM is dropped)."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error, expected UTF-8: {e}") from e


def _is_blank(record: list[str]) -> bool:
    return not any(value.strip() for value in record)


def _iter_records(csv_data: str):
    text = csv_data.lstrip("\ufeff")
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    try:
        for record in reader:
            if _is_blank(record):
                continue
            yield record
    except csv.Error as e:
        raise CsvParseError(f"CSV parsing error near line {reader.line_num}: {e}") from e


def read_headers(csv_data: str) -> list[str]:
    """Return the trimmed header row (first non-empty line)."""
    for record in _iter_records(csv_data):
        return [header.strip() for header in record]
    raise CsvParseError("CSV file appears to be empty or has no header row")


def parse_csv(csv_data: str) -> list[dict[str, str]]:
    """Parse the whole payload into rows keyed by trimmed header names.

    Blank lines are skipped; short rows are padded with empty cells and
    cells beyond the header are ignored. Row order is file order.
    """
    headers: list[str] | None = None
    rows: list[dict[str, str]] = []
    for record in _iter_records(csv_data):
        if headers is None:
            headers = [header.strip() for header in record]
            continue
        padded = record + [""] * (len(headers) - len(record))
        rows.append(dict(zip(headers, padded)))

    if headers is None:
        raise CsvParseError("CSV file appears to be empty or has no header row")

    logger.debug(f"Parsed {len(rows)} data rows with headers {headers}")
    return rows


def row_number(index: int) -> int:
    """Map a 0-based data row index to its 1-based file row number."""
    return index + FIRST_DATA_ROW
