"""CSV/TSV decoder with delimiter detection and light type inference.

The delimiter is re-detected from sample lines rather than trusted from
the file extension. The first non-empty row is the header; dotted header
names (``address.city``) unflatten into nested objects.
"""

from __future__ import annotations

import csv
import io
import re
from datetime import datetime, timezone
from typing import Iterator, Sequence

from core.constants import (
    CSV_CANDIDATE_DELIMITERS,
    CSV_DELIMITER_SAMPLE_LINES,
    CSV_SCHEMA_SAMPLE_ROWS,
    INT64_MAX,
    INT64_MIN,
)
from core.errors import DecodeError
from core.logging_config import get_logger
from core.types import Destination, Record, Schema, SchemaColumn
from core.values import UnsupportedValueError, ValueKind
from ingest.decode_types import DecodedRecord, DecodeFailure, DecodeItem, DecodeStream
from ingest.raw_source import RawSource

_LOGGER = get_logger(__name__)

_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})?$"
)


def decode_csv(
    source: RawSource,
    destination: Destination | None = None,
) -> DecodeStream:
    """Decode delimited text into records.

    Args:
        source: Byte source holding delimited text with a header row.
        destination: Optional destination attached to every record.

    Returns:
        Lazy stream carrying an advisory schema and a row-count estimate.

    Raises:
        DecodeError: If the source has no header row.
    """
    delimiter = detect_delimiter(source)
    header, total_rows, schema = _scan_csv(source, delimiter)
    _LOGGER.debug(
        "csv_scanned",
        source=source.label,
        delimiter=delimiter,
        columns=len(header),
        rows=total_rows,
    )
    items = _iter_csv_items(source, delimiter, header, destination)
    return DecodeStream(items, "csv", total_estimate=total_rows, schema=schema)


def detect_delimiter(source: RawSource) -> str:
    """Pick the delimiter that splits sample lines into the most consistent columns."""
    sample_lines = _sample_lines(source, CSV_DELIMITER_SAMPLE_LINES)
    best_delimiter = CSV_CANDIDATE_DELIMITERS[0]
    best_score = -1
    for delimiter in CSV_CANDIDATE_DELIMITERS:
        counts = [_field_count(line, delimiter) for line in sample_lines]
        counts = [count for count in counts if count > 0]
        if not counts or counts[0] <= 1:
            continue
        score = counts[0]
        if any(count != counts[0] for count in counts[1:]):
            score //= 2
        if score > best_score:
            best_score = score
            best_delimiter = delimiter
    return best_delimiter


def infer_value(raw_value: str) -> object:
    """Infer null, bool, int, float, ISO date, or string from one cell."""
    if raw_value == "":
        return None
    lowered = raw_value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_PATTERN.match(raw_value):
        number = int(raw_value)
        if INT64_MIN <= number <= INT64_MAX:
            return number
        return float(number)
    if _FLOAT_PATTERN.match(raw_value):
        return float(raw_value)
    parsed_date = _parse_iso_date(raw_value)
    if parsed_date is not None:
        return parsed_date
    return raw_value


def unflatten_row(flat: Sequence[tuple[str, object]]) -> dict[str, object]:
    """Nest dotted column names into sub-objects; later paths win on conflict."""
    result: dict[str, object] = {}
    for name, value in flat:
        parts = name.split(".")
        if len(parts) == 1 or not all(parts):
            result[name] = value
            continue
        current = result
        for part in parts[:-1]:
            nested = current.get(part)
            if not isinstance(nested, dict):
                nested = {}
                current[part] = nested
            current = nested
        current[parts[-1]] = value
    return result


def _parse_iso_date(raw_value: str) -> datetime | None:
    if _DATE_PATTERN.match(raw_value):
        candidate = f"{raw_value}T00:00:00"
    elif _DATETIME_PATTERN.match(raw_value):
        candidate = raw_value[:-1] + "+00:00" if raw_value.endswith("Z") else raw_value
    else:
        return None
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _iter_csv_items(
    source: RawSource,
    delimiter: str,
    header: list[str],
    destination: Destination | None,
) -> Iterator[DecodeItem]:
    with _open_text(source) as text:
        reader = csv.reader(text, delimiter=delimiter)
        header_seen = False
        for row, line_number, error in _iter_rows(reader):
            location = f"{source.label}:{line_number}"
            if error is not None:
                yield DecodeFailure(location, f"Malformed CSV row: {error}", destination)
                continue
            if not header_seen:
                header_seen = True
                continue
            yield _row_item(row, header, location, destination)


def _row_item(
    row: list[str],
    header: list[str],
    location: str,
    destination: Destination | None,
) -> DecodeItem:
    if len(row) != len(header):
        return DecodeFailure(
            location,
            f"Row has {len(row)} columns but the header has {len(header)}.",
            destination,
        )
    flat = [(name, infer_value(cell)) for name, cell in zip(header, row)]
    try:
        record = Record.from_mapping(unflatten_row(flat))
    except UnsupportedValueError as error:
        return DecodeFailure(location, str(error), destination)
    return DecodedRecord(record=record, location=location, destination=destination)


def _iter_rows(reader) -> Iterator[tuple[list[str], int, str | None]]:
    """Yield non-blank rows with their line numbers; csv errors become row errors."""
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except csv.Error as error:
            yield [], reader.line_num, str(error)
            continue
        if not any(cell.strip() for cell in row):
            continue
        yield row, reader.line_num, None


def _scan_csv(source: RawSource, delimiter: str) -> tuple[list[str], int, Schema]:
    """Read the header, count data rows, and infer column kinds from leading rows."""
    header: list[str] | None = None
    sample_kinds: list[set[ValueKind]] = []
    total_rows = 0
    sampled_rows = 0
    with _open_text(source) as text:
        reader = csv.reader(text, delimiter=delimiter)
        for row, _, error in _iter_rows(reader):
            if header is None:
                if error is None:
                    header = _normalize_header(row)
                    sample_kinds = [set() for _ in header]
                continue
            total_rows += 1
            if error is None and sampled_rows < CSV_SCHEMA_SAMPLE_ROWS and len(row) == len(header):
                sampled_rows += 1
                for kinds, cell in zip(sample_kinds, row):
                    kinds.add(_kind_of(infer_value(cell)))
    if header is None:
        raise DecodeError(
            f"Failed to read CSV header from {source.label}: no non-empty rows found."
        )
    columns = tuple(
        SchemaColumn(name=name, kind=_merge_kinds(kinds))
        for name, kinds in zip(header, sample_kinds)
    )
    schema = Schema(columns=columns, delimiter=delimiter, sampled_rows=sampled_rows)
    return header, total_rows, schema


def _normalize_header(row: list[str]) -> list[str]:
    return [cell.strip() or f"field_{index}" for index, cell in enumerate(row)]


def _kind_of(value: object) -> ValueKind:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, datetime):
        return "date"
    return "string"


def _merge_kinds(kinds: set[ValueKind]) -> ValueKind:
    present = kinds - {"null"}
    if not present:
        return "null" if kinds else "string"
    if len(present) == 1:
        return next(iter(present))
    if present == {"int", "float"}:
        return "float"
    return "string"


def _sample_lines(source: RawSource, limit: int) -> list[str]:
    lines: list[str] = []
    with _open_text(source) as text:
        for line in text:
            if not line.strip():
                continue
            lines.append(line.rstrip("\r\n"))
            if len(lines) >= limit:
                break
    return lines


def _field_count(line: str, delimiter: str) -> int:
    try:
        return len(next(csv.reader([line], delimiter=delimiter), []))
    except csv.Error:
        return 0


def _open_text(source: RawSource) -> io.TextIOWrapper:
    return io.TextIOWrapper(source.open(), encoding="utf-8-sig", errors="replace", newline="")
