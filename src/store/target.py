"""Target collection handles.

The writer and planner only need four collection calls, so any object
shaped like a pymongo ``Collection`` works as a target. Connection
ownership stays with the caller; the CLI uses ``MongoTargetResolver``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Protocol

import pymongo
from bson import Decimal128, json_util
from pymongo.errors import PyMongoError

from core.config import DocportConfig
from core.errors import TransportError
from core.logging_config import get_logger
from core.types import Destination

_LOGGER = get_logger(__name__)


class TargetCollection(Protocol):
    """Subset of the pymongo collection API used by imports."""

    def insert_many(self, documents: Iterable[Mapping[str, Any]], ordered: bool = ...) -> Any: ...

    def replace_one(
        self,
        filter: Mapping[str, Any],
        replacement: Mapping[str, Any],
        upsert: bool = ...,
    ) -> Any: ...

    def find(
        self, filter: Mapping[str, Any], projection: Any = ...
    ) -> Iterable[Mapping[str, Any]]: ...

    def create_index(self, keys: Any, **kwargs: Any) -> str: ...


TargetResolver = Callable[[Destination], TargetCollection]


def key_token(key: object) -> str:
    """Return a hashable token that matches keys the server treats as equal.

    Numbers compare by value across int, Int64, double, and Decimal128, so
    a stored ``1.0`` and an imported ``1`` share a token.
    """
    if isinstance(key, (int, float, Decimal128)) and not isinstance(key, bool):
        return f"number:{_normalized_number(key)}"
    return json_util.dumps(key, sort_keys=True)


def _normalized_number(value: int | float | Decimal128) -> str:
    number = value.to_decimal() if isinstance(value, Decimal128) else Decimal(value)
    if number.is_nan():
        return "NaN"
    if number.is_infinite():
        return str(number)
    if number == number.to_integral_value():
        return str(int(number))
    return str(number.normalize())


class MongoTargetResolver:
    """Resolve destinations to collections on one MongoDB deployment."""

    def __init__(self, uri: str, config: DocportConfig) -> None:
        try:
            self._client = pymongo.MongoClient(
                uri,
                serverSelectionTimeoutMS=config.operation_timeout_ms,
                connectTimeoutMS=config.operation_timeout_ms,
            )
        except PyMongoError as error:
            raise TransportError(
                f"Failed to create MongoDB client for {_redact(uri)}: {error}."
            ) from error
        _LOGGER.info("mongo_client_created", uri=_redact(uri))

    def collection(self, database: str, collection: str) -> TargetCollection:
        return self._client[database][collection]

    def __call__(self, destination: Destination) -> TargetCollection:
        return self.collection(destination.database, destination.collection)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MongoTargetResolver":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _redact(uri: str) -> str:
    """Hide credentials in a connection string before logging it."""
    scheme, separator, rest = uri.partition("://")
    if not separator or "@" not in rest:
        return uri
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
