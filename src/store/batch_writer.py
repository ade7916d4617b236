"""Conflict-aware batched writer.

Records are submitted as unordered bulk inserts so one failing document
never blocks its siblings. Duplicate-key failures are recoverable and
resolved by the conflict policy; every other failure is fatal and aborts
the import with the counters accumulated so far.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import pymongo
from pymongo.errors import BulkWriteError, PyMongoError, WriteError

from core.constants import DEFAULT_PRIMARY_KEY_FIELD, DUPLICATE_KEY_ERROR_CODES
from core.errors import ConflictError, TransportError
from core.logging_config import get_logger
from core.types import BatchResult, ConflictPolicy, Destination, FailureDescriptor
from ingest.decode_types import DecodedRecord, IndexRestore
from store.target import TargetCollection

_LOGGER = get_logger(__name__)


class ConflictAwareBatchWriter:
    """Write record batches under one conflict policy."""

    def __init__(
        self,
        policy: ConflictPolicy,
        timeout_seconds: float,
        key_field: str = DEFAULT_PRIMARY_KEY_FIELD,
    ) -> None:
        self._policy = policy
        self._timeout_seconds = timeout_seconds
        self._key_field = key_field

    def write_batch(
        self,
        target: TargetCollection,
        batch: Sequence[DecodedRecord],
        destination: Destination | None,
        result: BatchResult,
    ) -> None:
        """Insert one batch and fold its outcome into ``result``.

        Args:
            target: Collection receiving the batch.
            batch: Decoded records, in source order.
            destination: Destination label for per-collection counters.
            result: Accumulated result, updated only with applied effects.

        Raises:
            TransportError: For any failure other than duplicate keys.
        """
        if not batch:
            return
        documents = [item.record.to_document() for item in batch]
        staged = BatchResult()
        try:
            with pymongo.timeout(self._timeout_seconds):
                target.insert_many(documents, ordered=False)
        except BulkWriteError as error:
            self._handle_bulk_error(target, error, batch, documents, destination, staged, result)
        except PyMongoError as error:
            raise self._fatal(error, batch, destination, result) from error
        else:
            staged.add_inserted(len(documents), destination)
        result.merge(staged)
        _LOGGER.debug(
            "import_batch_written",
            destination=str(destination) if destination else None,
            batch_size=len(batch),
            inserted=staged.inserted,
            updated=staged.updated,
            skipped=staged.skipped,
            failed=staged.failed,
        )

    def record_failure(
        self,
        failure: FailureDescriptor,
        destination: Destination | None,
        result: BatchResult,
    ) -> None:
        """Account a record that never reached the writer."""
        result.add_failure(failure, destination)

    def restore_indexes(
        self,
        target: TargetCollection,
        restore: IndexRestore,
        result: BatchResult,
    ) -> None:
        """Recreate exported indexes after their collection has loaded.

        Index failures never abort the import; each one is recorded in
        ``result.errors``.
        """
        prefix = f"[{restore.destination}]"
        result.errors.extend(f"{prefix} {error}" for error in restore.errors)
        created = 0
        for definition in restore.indexes:
            options: dict[str, Any] = {}
            if definition.name:
                options["name"] = definition.name
            if definition.unique:
                options["unique"] = True
            if definition.sparse:
                options["sparse"] = True
            label = definition.name or ", ".join(field for field, _ in definition.keys)
            try:
                with pymongo.timeout(self._timeout_seconds):
                    target.create_index(list(definition.keys), **options)
            except PyMongoError as error:
                _LOGGER.warning(
                    "index_restore_failed",
                    destination=str(restore.destination),
                    index=label,
                    error=str(error),
                )
                result.errors.append(f"{prefix} Failed to create index '{label}': {error}")
                continue
            created += 1
        result.indexes_created += created
        _LOGGER.info(
            "indexes_restored",
            destination=str(restore.destination),
            created=created,
            failed=len(restore.indexes) - created,
        )

    def _handle_bulk_error(
        self,
        target: TargetCollection,
        error: BulkWriteError,
        batch: Sequence[DecodedRecord],
        documents: list[dict[str, Any]],
        destination: Destination | None,
        staged: BatchResult,
        result: BatchResult,
    ) -> None:
        details = error.details or {}
        write_errors = list(details.get("writeErrors", []))
        if not write_errors or not all(_is_duplicate_key(item) for item in write_errors):
            staged.add_inserted(int(details.get("nInserted", 0)), destination)
            result.merge(staged)
            raise self._fatal(error, batch, destination, result) from error
        staged.add_inserted(len(documents) - len(write_errors), destination)
        for write_error in sorted(write_errors, key=lambda item: item.get("index", 0)):
            index = int(write_error["index"])
            document = documents[index]
            conflict = ConflictError(
                key=document.get(self._key_field),
                message=f"Duplicate key {_describe_key(write_error, document, self._key_field)}.",
            )
            try:
                self._resolve_conflict(
                    target, conflict, write_error, document, batch[index], destination, staged
                )
            except PyMongoError as replace_error:
                result.merge(staged)
                raise self._fatal(replace_error, batch, destination, result) from replace_error

    def _resolve_conflict(
        self,
        target: TargetCollection,
        conflict: ConflictError,
        write_error: Mapping[str, Any],
        document: dict[str, Any],
        item: DecodedRecord,
        destination: Destination | None,
        staged: BatchResult,
    ) -> None:
        if self._policy == "skip":
            staged.add_skipped(1, destination)
            return
        if self._policy == "reject":
            staged.add_failure(
                FailureDescriptor(key=conflict.key, reason=str(conflict), location=item.location),
                destination,
            )
            return
        key_filter = dict(write_error.get("keyValue") or {self._key_field: conflict.key})
        try:
            with pymongo.timeout(self._timeout_seconds):
                target.replace_one(key_filter, document, upsert=True)
        except WriteError as error:
            staged.add_failure(
                FailureDescriptor(
                    key=conflict.key,
                    reason=f"Overwrite rejected: {error}",
                    location=item.location,
                ),
                destination,
            )
            return
        staged.add_updated(1, destination)

    def _fatal(
        self,
        error: Exception,
        batch: Sequence[DecodedRecord],
        destination: Destination | None,
        result: BatchResult,
    ) -> TransportError:
        target_label = str(destination) if destination else "target collection"
        _LOGGER.error(
            "import_batch_failed",
            destination=target_label,
            batch_size=len(batch),
            first_location=batch[0].location,
            error=str(error),
        )
        return TransportError(
            f"Batch of {len(batch)} records starting at {batch[0].location} "
            f"failed against {target_label}: {error}",
            partial_result=result,
        )


def _is_duplicate_key(write_error: Mapping[str, Any]) -> bool:
    return write_error.get("code") in DUPLICATE_KEY_ERROR_CODES


def _describe_key(
    write_error: Mapping[str, Any],
    document: Mapping[str, Any],
    key_field: str,
) -> str:
    key_value = write_error.get("keyValue")
    if isinstance(key_value, Mapping) and key_value:
        return ", ".join(f"{name}={value!r}" for name, value in key_value.items())
    return f"{key_field}={document.get(key_field)!r}"
