"""Typed decoder outputs.

Decoders yield one item per source record: either a decoded record or a
recoverable per-record failure. Archive decoding also yields index
restores after a collection's documents. Whole-document failures are
raised as ``DecodeError`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Union

from core.types import DetectedFormat, Destination, Record, Schema


@dataclass(frozen=True)
class DecodedRecord:
    """A successfully decoded record and where it came from."""

    record: Record
    location: str
    destination: Destination | None = None


@dataclass(frozen=True)
class DecodeFailure:
    """A record, row, or archive entry that could not be decoded."""

    location: str
    reason: str
    destination: Destination | None = None


@dataclass(frozen=True)
class IndexDefinition:
    """One secondary index exported alongside a collection."""

    keys: tuple[tuple[str, object], ...]
    name: str | None = None
    unique: bool = False
    sparse: bool = False


@dataclass(frozen=True)
class IndexRestore:
    """Indexes to recreate once a collection's documents have been written.

    Attributes:
        destination: Collection the indexes belong to.
        indexes: Parsed index definitions.
        location: Archive member the definitions came from.
        errors: Definitions that could not be parsed.
    """

    destination: Destination
    indexes: tuple[IndexDefinition, ...]
    location: str
    errors: tuple[str, ...] = ()


DecodeItem = Union[DecodedRecord, DecodeFailure, IndexRestore]


class DecodeStream:
    """Single-pass, non-restartable sequence of decode items.

    Attributes:
        detected_format: Format the source was decoded as.
        total_estimate: Estimated item count when the decoder can tell cheaply.
        schema: Advisory column schema for CSV sources.
    """

    def __init__(
        self,
        items: Iterator[DecodeItem],
        detected_format: DetectedFormat,
        total_estimate: int | None = None,
        schema: Schema | None = None,
    ) -> None:
        self._items = items
        self.detected_format = detected_format
        self.total_estimate = total_estimate
        self.schema = schema

    def __iter__(self) -> "DecodeStream":
        return self

    def __next__(self) -> DecodeItem:
        return next(self._items)

    def close(self) -> None:
        """Release the underlying reader when iteration stops early."""
        close = getattr(self._items, "close", None)
        if close is not None:
            close()
