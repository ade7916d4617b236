"""JSON array and NDJSON decoders.

Values are parsed as MongoDB extended JSON so tagged dates, identifiers,
64-bit integers, binaries, and decimals keep their exact types. A JSON
array is one atomic unit; NDJSON lines fail independently.
"""

from __future__ import annotations

from typing import Iterator

from bson import json_util
from bson.errors import BSONError

from core.constants import UTF8_BOM
from core.errors import DecodeError
from core.logging_config import get_logger
from core.types import Destination, Record
from core.values import UnsupportedValueError
from ingest.decode_types import DecodedRecord, DecodeFailure, DecodeItem, DecodeStream
from ingest.raw_source import RawSource

_LOGGER = get_logger(__name__)
_PARSE_ERRORS = (ValueError, TypeError, BSONError)


def decode_json_array(
    source: RawSource,
    destination: Destination | None = None,
) -> DecodeStream:
    """Decode a JSON array (or one lone object) into records.

    Args:
        source: Byte source holding one JSON document.
        destination: Optional destination attached to every record.

    Returns:
        Stream of decoded records.

    Raises:
        DecodeError: If the document or any element is malformed.
    """
    with source.open() as handle:
        raw_bytes = handle.read()
    try:
        text = raw_bytes.removeprefix(UTF8_BOM).decode("utf-8")
    except UnicodeDecodeError as error:
        raise DecodeError(
            f"Failed to decode {source.label}: content is not valid UTF-8 ({error.reason})."
        ) from error
    try:
        payload = json_util.loads(text)
    except _PARSE_ERRORS as error:
        raise DecodeError(
            f"Failed to parse JSON document {source.label}: {error}. "
            "Fix the JSON syntax and retry the import."
        ) from error
    elements = payload if isinstance(payload, list) else [payload]
    items = [
        _array_element_item(source.label, index, element, destination)
        for index, element in enumerate(elements)
    ]
    _LOGGER.debug("json_array_decoded", source=source.label, record_count=len(items))
    return DecodeStream(iter(items), "jsonarray", total_estimate=len(items))


def decode_ndjson(
    source: RawSource,
    destination: Destination | None = None,
) -> DecodeStream:
    """Decode newline-delimited JSON line by line.

    Args:
        source: Byte source holding one JSON object per line.
        destination: Optional destination attached to every record.

    Returns:
        Lazy stream; malformed lines become per-record failures.
    """
    total_estimate = _count_non_blank_lines(source)
    return DecodeStream(
        _iter_ndjson_items(source, destination), "ndjson", total_estimate=total_estimate
    )


def _array_element_item(
    label: str,
    index: int,
    element: object,
    destination: Destination | None,
) -> DecodedRecord:
    location = f"{label}[{index}]"
    if not isinstance(element, dict):
        raise DecodeError(
            f"Invalid JSON array element at {location}: expected object, "
            f"got {type(element).__name__}."
        )
    try:
        record = Record.from_mapping(element)
    except UnsupportedValueError as error:
        raise DecodeError(f"Invalid JSON array element at {location}: {error}") from error
    return DecodedRecord(record=record, location=location, destination=destination)


def _iter_ndjson_items(
    source: RawSource,
    destination: Destination | None,
) -> Iterator[DecodeItem]:
    with source.open() as handle:
        for line_number, raw_line in enumerate(handle, 1):
            if line_number == 1:
                raw_line = raw_line.removeprefix(UTF8_BOM)
            if not raw_line.strip():
                continue
            location = f"{source.label}:{line_number}"
            yield _ndjson_line_item(raw_line, location, destination)


def _ndjson_line_item(
    raw_line: bytes,
    location: str,
    destination: Destination | None,
) -> DecodeItem:
    try:
        payload = json_util.loads(raw_line.decode("utf-8"))
    except UnicodeDecodeError:
        return DecodeFailure(location, "Line is not valid UTF-8.", destination)
    except _PARSE_ERRORS as error:
        return DecodeFailure(location, f"Malformed JSON line: {error}", destination)
    if not isinstance(payload, dict):
        return DecodeFailure(
            location, f"Expected JSON object, got {type(payload).__name__}.", destination
        )
    try:
        record = Record.from_mapping(payload)
    except UnsupportedValueError as error:
        return DecodeFailure(location, str(error), destination)
    return DecodedRecord(record=record, location=location, destination=destination)


def _count_non_blank_lines(source: RawSource) -> int:
    with source.open() as handle:
        return sum(1 for raw_line in handle if raw_line.strip(UTF8_BOM + b" \t\r\n"))
