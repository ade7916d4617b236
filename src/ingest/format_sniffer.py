"""Content-based format classification.

This module classifies a source from a bounded byte prefix, so the cost
of detection does not grow with file size. A JSON line longer than the
prefix triggers a read-ahead capped at a fixed number of lines. Extension
hints are never consulted; the same bytes always produce the same format.
"""

from __future__ import annotations

import csv
import json

from core.constants import (
    CSV_CANDIDATE_DELIMITERS,
    DEFAULT_SNIFF_BYTES,
    NDJSON_SCAN_LINE_BYTES,
    NDJSON_SCAN_LINES,
    UTF8_BOM,
    ZIP_EMPTY_ARCHIVE_SIGNATURE,
    ZIP_LOCAL_HEADER_SIGNATURE,
)
from core.types import DetectedFormat
from ingest.raw_source import RawSource


def detect_format(source: RawSource, sniff_bytes: int = DEFAULT_SNIFF_BYTES) -> DetectedFormat:
    """Classify a source into a known structured-data format.

    Args:
        source: Byte source to inspect.
        sniff_bytes: Maximum number of leading bytes to read.

    Returns:
        Detected format, ``"unknown"`` when nothing matches.
    """
    prefix = source.read_prefix(sniff_bytes)
    is_complete = len(prefix) < sniff_bytes
    detected = detect_prefix_format(prefix, is_complete)
    if detected == "jsonarray" and not is_complete and _first_line_overflows(prefix):
        return "ndjson" if _scan_ndjson_lines(source) else "jsonarray"
    return detected


def detect_prefix_format(prefix: bytes, is_complete: bool) -> DetectedFormat:
    """Classify raw prefix bytes.

    Args:
        prefix: Leading bytes of the source.
        is_complete: Whether the prefix holds the entire source.

    Returns:
        Detected format.
    """
    if not prefix:
        return "unknown"
    if prefix[:4] in (ZIP_LOCAL_HEADER_SIGNATURE, ZIP_EMPTY_ARCHIVE_SIGNATURE):
        return "zip"
    text = _decode_prefix_text(prefix.removeprefix(UTF8_BOM), is_complete)
    if text is None:
        return "unknown"
    stripped = text.lstrip()
    if not stripped:
        return "unknown"
    first_char = stripped[0]
    if first_char == "[":
        return "jsonarray"
    if first_char == "{":
        return _detect_json_variant(stripped, is_complete)
    if _is_likely_csv(stripped, is_complete):
        return "csv"
    return "unknown"


def _decode_prefix_text(prefix: bytes, is_complete: bool) -> str | None:
    """Decode prefix bytes as UTF-8, tolerating a multibyte char cut at the end."""
    try:
        return prefix.decode("utf-8")
    except UnicodeDecodeError as error:
        if is_complete or error.start < len(prefix) - 3:
            return None
        return prefix[: error.start].decode("utf-8")


def _detect_json_variant(text: str, is_complete: bool) -> DetectedFormat:
    """Distinguish NDJSON from one top-level JSON object.

    The first line must be a complete object. A second object line, or a
    line cut off by the prefix bound that opens another object, marks NDJSON.
    """
    lines = [line.strip() for line in text.splitlines()]
    truncated_tail = ""
    if not is_complete and lines and not text.endswith(("\n", "\r")):
        truncated_tail = lines.pop()
    object_lines = [line for line in lines if line]
    if not object_lines or not _parses_as_object(object_lines[0]):
        return "jsonarray"
    if len(object_lines) >= 2:
        return "ndjson" if _parses_as_object(object_lines[1]) else "jsonarray"
    if truncated_tail.startswith("{"):
        return "ndjson"
    return "jsonarray"


def _parses_as_object(line: str) -> bool:
    if not line.startswith("{"):
        return False
    try:
        return isinstance(json.loads(line), dict)
    except ValueError:
        return False


def _is_likely_csv(text: str, is_complete: bool) -> bool:
    """Check the first two non-blank lines for a consistent delimiter."""
    lines = [line for line in _complete_lines(text, is_complete) if line.strip()]
    if len(lines) < 2:
        return False
    header, first_row = lines[0], lines[1]
    delimiter, column_count = _best_delimiter(header)
    if delimiter is None:
        return False
    return _column_count(first_row, delimiter) == column_count


def _best_delimiter(line: str) -> tuple[str | None, int]:
    best_delimiter: str | None = None
    best_count = 1
    for delimiter in CSV_CANDIDATE_DELIMITERS:
        count = _column_count(line, delimiter)
        if count > best_count:
            best_delimiter = delimiter
            best_count = count
    return best_delimiter, best_count


def _column_count(line: str, delimiter: str) -> int:
    try:
        row = next(csv.reader([line], delimiter=delimiter), [])
    except csv.Error:
        return 0
    return len(row)


def _complete_lines(text: str, is_complete: bool) -> list[str]:
    """Split into lines, dropping a trailing line cut off by the prefix bound."""
    lines = text.splitlines()
    if not is_complete and lines and not text.endswith(("\n", "\r")):
        lines = lines[:-1]
    return lines


def _first_line_overflows(prefix: bytes) -> bool:
    """Check whether the first object line runs past the prefix bound."""
    stripped = prefix.removeprefix(UTF8_BOM).lstrip()
    return stripped.startswith(b"{") and b"\n" not in stripped and b"\r" not in stripped


def _scan_ndjson_lines(source: RawSource) -> bool:
    """Read ahead a bounded number of lines looking for two object lines."""
    object_lines = 0
    with source.open() as handle:
        for _ in range(NDJSON_SCAN_LINES):
            raw_line = handle.readline(NDJSON_SCAN_LINE_BYTES)
            if not raw_line:
                break
            if len(raw_line) == NDJSON_SCAN_LINE_BYTES and not raw_line.endswith(b"\n"):
                return False
            candidate = raw_line.removeprefix(UTF8_BOM).strip()
            if not candidate:
                continue
            try:
                line = candidate.decode("utf-8")
            except UnicodeDecodeError:
                return False
            if not _parses_as_object(line):
                return False
            object_lines += 1
            if object_lines >= 2:
                return True
    return False
