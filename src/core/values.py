"""Tagged record values and extended-type conversions.

Decoded field values are mapped into one closed set of kinds so decoders,
the batch writer, and the dry-run planner never inspect raw Python types.
Conversion back to BSON-native values preserves exact extended types
(dates, 64-bit integers, identifiers, binary, decimals).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Mapping, Sequence

from bson import Binary, Decimal128, Int64, ObjectId

from core.constants import INT64_MAX, INT64_MIN

ValueKind = Literal[
    "null",
    "bool",
    "int",
    "float",
    "string",
    "date",
    "binary",
    "array",
    "object",
    "identifier",
    "decimal",
]


class UnsupportedValueError(ValueError):
    """Raised when a decoded value has no tagged representation."""


@dataclass(frozen=True)
class TaggedValue:
    """One field value tagged with its kind.

    Attributes:
        kind: Closed value kind.
        payload: Kind-specific payload. Arrays hold a tuple of tagged values,
            objects hold a tuple of ``(name, tagged value)`` pairs.
    """

    kind: ValueKind
    payload: object = None


NULL_VALUE = TaggedValue("null", None)


def from_native(value: object) -> TaggedValue:
    """Tag a decoded Python/BSON value.

    Args:
        value: Value produced by a JSON, extended JSON, or CSV decoder.

    Returns:
        Tagged value.

    Raises:
        UnsupportedValueError: If the value has no tagged representation.
    """
    if value is None:
        return NULL_VALUE
    if isinstance(value, bool):
        return TaggedValue("bool", value)
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise UnsupportedValueError(
                f"Integer {value} does not fit in a signed 64-bit field."
            )
        if isinstance(value, Int64):
            return TaggedValue("int", Int64(value))
        return TaggedValue("int", int(value))
    if isinstance(value, float):
        return TaggedValue("float", value)
    if isinstance(value, str):
        return TaggedValue("string", value)
    if isinstance(value, datetime):
        return TaggedValue("date", _as_utc(value))
    if isinstance(value, ObjectId):
        return TaggedValue("identifier", value)
    if isinstance(value, Decimal128):
        return TaggedValue("decimal", value)
    if isinstance(value, (bytes, bytearray)):
        return TaggedValue("binary", _as_binary(value))
    if isinstance(value, Mapping):
        return TaggedValue(
            "object", tuple((str(name), from_native(item)) for name, item in value.items())
        )
    if isinstance(value, (list, tuple)):
        return TaggedValue("array", tuple(from_native(item) for item in value))
    raise UnsupportedValueError(f"Unsupported value type {type(value).__name__}.")


def to_native(value: TaggedValue) -> object:
    """Convert a tagged value into a BSON-encodable Python value."""
    kind = value.kind
    if kind == "null":
        return None
    if kind in ("bool", "float", "string", "date", "identifier", "decimal", "binary"):
        return value.payload
    if kind == "int":
        return _as_bson_int(value.payload)
    if kind == "array":
        return [to_native(item) for item in _tuple_payload(value)]
    if kind == "object":
        return {name: to_native(item) for name, item in _tuple_payload(value)}
    raise UnsupportedValueError(f"Unknown value kind {kind!r}.")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_binary(value: bytes | bytearray) -> Binary:
    if isinstance(value, Binary):
        return value
    return Binary(bytes(value))


def _as_bson_int(payload: object) -> int:
    if isinstance(payload, Int64):
        return payload
    number = int(payload)  # type: ignore[call-overload]
    if -(2**31) <= number < 2**31:
        return number
    return Int64(number)


def _tuple_payload(value: TaggedValue) -> Sequence:
    payload = value.payload
    if not isinstance(payload, tuple):
        raise UnsupportedValueError(
            f"Tagged {value.kind} value must carry a tuple payload, "
            f"got {type(payload).__name__}."
        )
    return payload
