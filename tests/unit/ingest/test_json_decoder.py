"""Unit tests for JSON array and NDJSON decoders."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId

from core.errors import DecodeError
from ingest.decode_types import DecodedRecord, DecodeFailure
from ingest.json_decoder import decode_json_array, decode_ndjson
from ingest.raw_source import BytesSource


def test_decode_json_array_yields_records_in_order() -> None:
    """Array elements should decode to records in source order."""
    stream = decode_json_array(BytesSource(b'[{"_id": 1}, {"_id": 2}]', label="a.json"))

    keys = [item.record.key() for item in stream]

    assert (keys, stream.total_estimate) == ([1, 2], 2)


def test_decode_json_array_wraps_single_object() -> None:
    """One top-level object should decode as a single record."""
    stream = decode_json_array(BytesSource(b'{"name": "test"}', label="one.json"))

    assert [item.record.to_document() for item in stream] == [{"name": "test"}]


def test_decode_json_array_preserves_extended_types() -> None:
    """Extended JSON tags should keep identifiers and dates typed."""
    oid = ObjectId()
    data = (
        '[{"_id": {"$oid": "%s"}, "at": {"$date": "2024-03-01T00:00:00Z"}}]' % oid
    ).encode("utf-8")

    document = next(iter(decode_json_array(BytesSource(data, label="x.json")))).record.to_document()

    assert (document["_id"], document["at"]) == (
        oid,
        datetime(2024, 3, 1, tzinfo=timezone.utc),
    )


def test_decode_json_array_fails_atomically_on_bad_syntax() -> None:
    """Malformed JSON should fail the whole document."""
    with pytest.raises(DecodeError, match="bad.json"):
        decode_json_array(BytesSource(b'[{"_id": 1}, {"_id": ', label="bad.json"))


def test_decode_json_array_rejects_non_object_elements() -> None:
    """Scalar array elements cannot become records."""
    with pytest.raises(DecodeError, match=r"\[1\]"):
        decode_json_array(BytesSource(b'[{"_id": 1}, 42]', label="mixed.json"))


def test_decode_ndjson_reports_bad_lines_individually() -> None:
    """A malformed line should fail alone, with its line number."""
    data = b'{"_id": 1}\n{"_id": \n\n{"_id": 3}\n[1, 2]\n'

    items = list(decode_ndjson(BytesSource(data, label="rows.ndjson")))

    assert [(type(item).__name__, item.location) for item in items] == [
        ("DecodedRecord", "rows.ndjson:1"),
        ("DecodeFailure", "rows.ndjson:2"),
        ("DecodedRecord", "rows.ndjson:4"),
        ("DecodeFailure", "rows.ndjson:5"),
    ]


def test_decode_ndjson_estimates_non_blank_lines() -> None:
    """The total estimate should count non-blank lines only."""
    stream = decode_ndjson(BytesSource(b'{"a": 1}\n\n{"a": 2}\n   \n', label="n.ndjson"))

    assert stream.total_estimate == 2


def test_decode_ndjson_strips_leading_bom() -> None:
    """A UTF-8 BOM before the first object should be ignored."""
    stream = decode_ndjson(BytesSource(b'\xef\xbb\xbf{"a": 1}\n{"a": 2}\n', label="bom.ndjson"))

    assert all(isinstance(item, DecodedRecord) for item in stream)


def test_decode_ndjson_fails_out_of_range_integers() -> None:
    """Integers that do not fit in 64 bits should fail the line."""
    data = b'{"n": 99999999999999999999}\n'

    items = list(decode_ndjson(BytesSource(data, label="big.ndjson")))

    assert isinstance(items[0], DecodeFailure)
