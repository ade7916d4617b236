"""Non-mutating import preview.

The planner batches records exactly like the writer but only asks the
target which keys already exist, one set-membership query per batch.
Its counters line up with what the writer would report for the same
input and target state.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import pymongo
from pymongo.errors import PyMongoError

from core.constants import (
    DEFAULT_CONFLICT_SAMPLE_SIZE,
    DEFAULT_DRY_RUN_KEY_LIMIT,
    DEFAULT_PRIMARY_KEY_FIELD,
)
from core.errors import TransportError
from core.logging_config import get_logger
from core.types import BatchResult, ConflictPolicy, Destination, DryRunPreview, FailureDescriptor
from ingest.decode_types import DecodedRecord, IndexRestore
from store.target import TargetCollection, key_token

_LOGGER = get_logger(__name__)


class DryRunPlanner:
    """Preview an import without touching the target.

    Keys already seen in this run are remembered so a repeated key counts
    as a conflict, like the writer would see it. Memory grows with the
    number of distinct keys; past ``key_limit`` new keys are no longer
    remembered and the preview is flagged as inexact for in-run duplicates.
    """

    def __init__(
        self,
        policy: ConflictPolicy,
        timeout_seconds: float,
        key_field: str = DEFAULT_PRIMARY_KEY_FIELD,
        sample_size: int = DEFAULT_CONFLICT_SAMPLE_SIZE,
        key_limit: int = DEFAULT_DRY_RUN_KEY_LIMIT,
    ) -> None:
        self._policy = policy
        self._timeout_seconds = timeout_seconds
        self._key_field = key_field
        self._sample_size = sample_size
        self._key_limit = key_limit
        self._seen: dict[str, set[str]] = {}
        self._seen_count = 0
        self.preview = DryRunPreview(policy=policy)

    def plan(
        self,
        target: TargetCollection,
        records: Iterable[DecodedRecord],
        batch_size: int,
    ) -> DryRunPreview:
        """Preview a whole record sequence against one target.

        Args:
            target: Collection the import would write to.
            records: Decoded records.
            batch_size: Records per existence check.

        Returns:
            The accumulated preview.
        """
        result = BatchResult()
        batch: list[DecodedRecord] = []
        for item in records:
            batch.append(item)
            if len(batch) >= batch_size:
                self.write_batch(target, batch, None, result)
                batch = []
        self.write_batch(target, batch, None, result)
        return self.preview

    def write_batch(
        self,
        target: TargetCollection,
        batch: Sequence[DecodedRecord],
        destination: Destination | None,
        result: BatchResult,
    ) -> None:
        """Classify one batch as would-insert or conflict.

        Raises:
            TransportError: If the existence check fails.
        """
        if not batch:
            return
        keys = [item.record.key(self._key_field) for item in batch]
        existing = self._existing_tokens(target, keys, batch, destination, result)
        seen = self._seen.setdefault(str(destination) if destination else "", set())
        for item, key in zip(batch, keys):
            if key is None:
                self._count_insert(destination, result)
                continue
            token = key_token(key)
            if token in existing or token in seen:
                self._count_conflict(item, key, destination, result)
            else:
                self._count_insert(destination, result)
                self._remember(seen, token, destination)

    def record_failure(
        self,
        failure: FailureDescriptor,
        destination: Destination | None,
        result: BatchResult,
    ) -> None:
        """Account a record that failed to decode."""
        self.preview.failed += 1
        self.preview.failures.append(failure)
        result.add_failure(failure, destination)

    def restore_indexes(
        self,
        target: TargetCollection,
        restore: IndexRestore,
        result: BatchResult,
    ) -> None:
        """Dry runs never create indexes; only note what would be restored."""
        _LOGGER.info(
            "dry_run_indexes_skipped",
            destination=str(restore.destination),
            index_count=len(restore.indexes),
        )

    def _remember(self, seen: set[str], token: str, destination: Destination | None) -> None:
        if self._seen_count >= self._key_limit:
            if self.preview.duplicates_exact:
                self.preview.duplicates_exact = False
                _LOGGER.warning(
                    "dry_run_key_limit_reached",
                    destination=str(destination) if destination else None,
                    key_limit=self._key_limit,
                )
            return
        seen.add(token)
        self._seen_count += 1

    def _existing_tokens(
        self,
        target: TargetCollection,
        keys: list[object | None],
        batch: Sequence[DecodedRecord],
        destination: Destination | None,
        result: BatchResult,
    ) -> set[str]:
        lookup_keys = [key for key in keys if key is not None]
        if not lookup_keys:
            return set()
        try:
            with pymongo.timeout(self._timeout_seconds):
                cursor = target.find(
                    {self._key_field: {"$in": lookup_keys}}, {self._key_field: 1}
                )
                return {key_token(document.get(self._key_field)) for document in cursor}
        except PyMongoError as error:
            target_label = str(destination) if destination else "target collection"
            _LOGGER.error("dry_run_check_failed", destination=target_label, error=str(error))
            raise TransportError(
                f"Existence check for {len(batch)} records starting at {batch[0].location} "
                f"failed against {target_label}: {error}",
                partial_result=result,
            ) from error

    def _count_insert(self, destination: Destination | None, result: BatchResult) -> None:
        self.preview.would_insert += 1
        result.add_inserted(1, destination)

    def _count_conflict(
        self,
        item: DecodedRecord,
        key: object,
        destination: Destination | None,
        result: BatchResult,
    ) -> None:
        if len(self.preview.conflict_sample) < self._sample_size:
            self.preview.conflict_sample.append(key)
        if self._policy == "skip":
            self.preview.would_skip += 1
            result.add_skipped(1, destination)
        elif self._policy == "overwrite":
            self.preview.would_overwrite += 1
            result.add_updated(1, destination)
        else:
            failure = FailureDescriptor(
                key=key, reason=f"Duplicate key {self._key_field}={key!r}.", location=item.location
            )
            self.preview.would_reject += 1
            self.preview.failures.append(failure)
            result.add_failure(failure, destination)
