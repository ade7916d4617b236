"""Decoder dispatch by detected format.

This module routes a classified source to its decoder and expands Zip
archives entry by entry, sniffing and decoding each member on its own.
Entries outside the requested databases or collections are skipped.
"""

from __future__ import annotations

from typing import Iterator

from core.constants import DEFAULT_SNIFF_BYTES
from core.errors import ClassificationError, DecodeError
from core.logging_config import get_logger
from core.types import DetectedFormat, Destination
from ingest.csv_decoder import decode_csv
from ingest.decode_types import DecodeFailure, DecodeItem, DecodeStream
from ingest.format_sniffer import detect_format
from ingest.json_decoder import decode_json_array, decode_ndjson
from ingest.raw_source import RawSource
from ingest.zip_decoder import DestinationFilter, ZipArchive, ZipEntry

_LOGGER = get_logger(__name__)


def decode_source(
    source: RawSource,
    detected_format: DetectedFormat,
    destination: Destination | None = None,
    sniff_bytes: int = DEFAULT_SNIFF_BYTES,
    selects: DestinationFilter | None = None,
) -> DecodeStream:
    """Open a decode stream for a classified source.

    Args:
        source: Byte source to decode.
        detected_format: Format returned by the sniffer or an explicit hint.
        destination: Destination attached to records of non-archive sources.
        sniff_bytes: Prefix bound used when sniffing archive entries.
        selects: Optional filter deciding which archive destinations load.

    Returns:
        Single-pass stream of decode items.

    Raises:
        ClassificationError: If the format is ``"unknown"``.
        DecodeError: If the whole document or archive cannot be decoded.
    """
    if detected_format == "jsonarray":
        return decode_json_array(source, destination)
    if detected_format == "ndjson":
        return decode_ndjson(source, destination)
    if detected_format == "csv":
        return decode_csv(source, destination)
    if detected_format == "zip":
        return _decode_zip(source, sniff_bytes, selects)
    raise ClassificationError(
        f"Cannot decode {source.label}: content does not match JSON, NDJSON, CSV, or Zip. "
        "Check the file or pass an explicit format."
    )


def _decode_zip(
    source: RawSource,
    sniff_bytes: int,
    selects: DestinationFilter | None,
) -> DecodeStream:
    archive = ZipArchive(source)
    return DecodeStream(
        _iter_archive_items(archive, sniff_bytes, selects),
        "zip",
        total_estimate=archive.total_estimate(selects),
    )


def _iter_archive_items(
    archive: ZipArchive,
    sniff_bytes: int,
    selects: DestinationFilter | None,
) -> Iterator[DecodeItem]:
    for entry in archive.iter_entries():
        if entry.destination is not None and selects is not None:
            if not selects(entry.destination):
                _LOGGER.debug("zip_entry_not_selected", entry=entry.path)
                continue
        entry_format = detect_format(entry.source, sniff_bytes)
        if entry_format != "zip" and entry.path_error is not None:
            _LOGGER.warning("zip_entry_rejected", entry=entry.path, reason=entry.path_error)
            yield DecodeFailure(entry.source.label, entry.path_error)
            continue
        yield from _iter_entry_items(entry, entry_format, sniff_bytes, selects)
        if entry.destination is not None and entry.is_export_layout:
            restore = archive.index_restore(entry.destination)
            if restore is not None:
                yield restore


def _iter_entry_items(
    entry: ZipEntry,
    entry_format: DetectedFormat,
    sniff_bytes: int,
    selects: DestinationFilter | None,
) -> Iterator[DecodeItem]:
    try:
        stream = decode_source(
            entry.source, entry_format, entry.destination, sniff_bytes, selects
        )
    except (ClassificationError, DecodeError) as error:
        _LOGGER.warning("zip_entry_undecodable", entry=entry.path, error=str(error))
        yield DecodeFailure(entry.source.label, str(error), entry.destination)
        return
    yield from stream
