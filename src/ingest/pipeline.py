"""Import orchestration with progress and cooperative cancellation.

This module drives sniffer, decoder, and writer (or dry-run planner) for
one import. Batches run strictly one after another. After every batch
the coordinator publishes a progress snapshot and then polls the
cancellation token, so an in-flight batch always completes.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Protocol, Sequence

from core.cancellation import CancellationToken
from core.config import DocportConfig
from core.constants import (
    EVENT_IMPORT_CANCELLED,
    EVENT_IMPORT_COMPLETE,
    EVENT_IMPORT_ERROR,
    EVENT_IMPORT_PROGRESS,
)
from core.errors import ClassificationError, DecodeError, ImportStateError, TransportError
from core.logging_config import get_logger
from core.types import (
    BatchResult,
    DetectedFormat,
    Destination,
    DryRunPreview,
    FailureDescriptor,
    ImportOptions,
    ImportOutcome,
    ImportStatus,
    ProgressSnapshot,
)
from ingest.decode_types import DecodedRecord, DecodeFailure, DecodeStream, IndexRestore
from ingest.decoding import decode_source
from ingest.format_sniffer import detect_format
from ingest.progress import EventSink, ProgressChannel
from ingest.raw_source import RawSource
from store.batch_writer import ConflictAwareBatchWriter
from store.dry_run_planner import DryRunPlanner
from store.target import TargetCollection, TargetResolver

_LOGGER = get_logger(__name__)

ALLOWED_STATUS_TRANSITIONS: dict[ImportStatus, tuple[ImportStatus, ...]] = {
    "idle": ("running",),
    "running": ("completed", "cancelled", "failed"),
    "completed": (),
    "cancelled": (),
    "failed": (),
}
_TERMINAL_EVENTS: dict[ImportStatus, str] = {
    "completed": EVENT_IMPORT_COMPLETE,
    "cancelled": EVENT_IMPORT_CANCELLED,
    "failed": EVENT_IMPORT_ERROR,
}


class BatchProcessor(Protocol):
    """Batch sink shared by the writer and the dry-run planner."""

    def write_batch(
        self,
        target: TargetCollection,
        batch: Sequence[DecodedRecord],
        destination: Destination | None,
        result: BatchResult,
    ) -> None: ...

    def record_failure(
        self,
        failure: FailureDescriptor,
        destination: Destination | None,
        result: BatchResult,
    ) -> None: ...

    def restore_indexes(
        self,
        target: TargetCollection,
        restore: IndexRestore,
        result: BatchResult,
    ) -> None: ...


class _ImportCancelled(Exception):
    """Internal signal raised at a batch boundary once cancellation is seen."""


class ImportCoordinator:
    """Single-use state machine for one import: idle, running, then terminal."""

    def __init__(
        self,
        source: RawSource,
        target: TargetCollection,
        options: ImportOptions,
        config: DocportConfig,
        token: CancellationToken | None = None,
        events: EventSink | None = None,
        resolver: TargetResolver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._target = target
        self._options = options
        self._config = config
        self._token = token or CancellationToken()
        self.events: EventSink = events or ProgressChannel(config.progress_queue_size)
        self._resolver = resolver
        self._clock = clock
        self._status: ImportStatus = "idle"
        self._targets: dict[Destination, TargetCollection] = {}
        self._result = BatchResult()
        self._batches_completed = 0
        self._last_published = -1
        self._started_at = 0.0
        self._total_estimate: int | None = None
        self._planner: DryRunPlanner | None = None

    @property
    def status(self) -> ImportStatus:
        return self._status

    def run(self) -> ImportOutcome:
        """Run the import to a terminal status.

        Returns:
            Terminal outcome carrying the accumulated result.

        Raises:
            ImportStateError: If this coordinator already ran.
        """
        self._transition("running")
        self._started_at = self._clock()
        detected_format: DetectedFormat = self._options.format_hint or "unknown"
        _LOGGER.info(
            "import_started",
            source=self._source.label,
            policy=self._options.policy,
            dry_run=self._options.dry_run,
        )
        processor = self._build_processor()
        try:
            if self._options.format_hint is None:
                detected_format = detect_format(self._source, self._config.sniff_bytes)
            stream = decode_source(
                self._source,
                detected_format,
                sniff_bytes=self._config.sniff_bytes,
                selects=self._selection(),
            )
            self._total_estimate = stream.total_estimate
            self._drive(stream, processor)
        except _ImportCancelled:
            return self._finish("cancelled", detected_format, None)
        except (ClassificationError, DecodeError, TransportError) as error:
            return self._finish("failed", detected_format, error)
        except OSError as error:
            wrapped = DecodeError(f"Failed to read {self._source.label}: {error}")
            return self._finish("failed", detected_format, wrapped)
        except Exception as error:
            return self._finish("failed", detected_format, error)
        return self._finish("completed", detected_format, None)

    def _selection(self) -> Callable[[Destination], bool] | None:
        if self._options.databases or self._options.collections:
            return self._options.selects
        return None

    def _build_processor(self) -> BatchProcessor:
        timeout_seconds = self._config.operation_timeout_seconds
        if self._options.dry_run:
            self._planner = DryRunPlanner(
                self._options.policy,
                timeout_seconds,
                key_field=self._options.key_field,
                sample_size=self._config.conflict_sample_size,
                key_limit=self._config.dry_run_key_limit,
            )
            return self._planner
        return ConflictAwareBatchWriter(
            self._options.policy, timeout_seconds, key_field=self._options.key_field
        )

    def _drive(self, stream: DecodeStream, processor: BatchProcessor) -> None:
        batch_size = self._options.batch_size or self._config.batch_size
        batch: list[DecodedRecord] = []
        batch_destination: Destination | None = None
        try:
            for item in stream:
                if isinstance(item, IndexRestore):
                    if batch:
                        self._submit(processor, batch, batch_destination)
                        batch = []
                    target = self._target_for(item.destination)
                    processor.restore_indexes(target, item, self._result)
                    continue
                if isinstance(item, DecodeFailure):
                    failure = FailureDescriptor(
                        key=None, reason=item.reason, location=item.location
                    )
                    processor.record_failure(failure, item.destination, self._result)
                    continue
                if batch and item.destination != batch_destination:
                    self._submit(processor, batch, batch_destination)
                    batch = []
                batch_destination = item.destination
                batch.append(item)
                if len(batch) >= batch_size:
                    self._submit(processor, batch, batch_destination)
                    batch = []
            if batch:
                self._submit(processor, batch, batch_destination)
        finally:
            stream.close()
        if self._result.records_processed != self._last_published:
            self._publish(batch_destination)

    def _submit(
        self,
        processor: BatchProcessor,
        batch: list[DecodedRecord],
        destination: Destination | None,
    ) -> None:
        processor.write_batch(self._target_for(destination), batch, destination, self._result)
        self._batches_completed += 1
        self._publish(destination)
        if self._token.cancelled or not self._token.wait_if_paused():
            raise _ImportCancelled()

    def _publish(self, destination: Destination | None) -> None:
        snapshot = ProgressSnapshot(
            records_processed=self._result.records_processed,
            total_estimate=self._total_estimate,
            elapsed_ms=int((self._clock() - self._started_at) * 1000),
            cancelled=self._token.cancelled,
            batches_completed=self._batches_completed,
            destination=str(destination) if destination else None,
        )
        self._last_published = snapshot.records_processed
        self.events.emit(EVENT_IMPORT_PROGRESS, snapshot)

    def _target_for(self, destination: Destination | None) -> TargetCollection:
        if destination is None or self._resolver is None:
            return self._target
        target = self._targets.get(destination)
        if target is None:
            target = self._resolver(destination)
            self._targets[destination] = target
        return target

    def _finish(
        self,
        status: ImportStatus,
        detected_format: DetectedFormat,
        error: Exception | None,
    ) -> ImportOutcome:
        self._transition(status)
        preview: DryRunPreview | None = self._planner.preview if self._planner else None
        outcome = ImportOutcome(
            status=status,
            result=self._result,
            detected_format=detected_format,
            dry_run=self._options.dry_run,
            preview=preview,
            error=error,
        )
        _log_outcome(self._source.label, outcome, self._clock() - self._started_at)
        self.events.emit(_TERMINAL_EVENTS[status], outcome)
        return outcome

    def _transition(self, next_status: ImportStatus) -> None:
        allowed = ALLOWED_STATUS_TRANSITIONS[self._status]
        if next_status not in allowed:
            raise ImportStateError(
                f"Invalid import state transition {self._status!r} -> {next_status!r}. "
                "Create a new coordinator for each import."
            )
        self._status = next_status


def run_import(
    source: RawSource,
    target: TargetCollection,
    options: ImportOptions,
    config: DocportConfig,
    token: CancellationToken | None = None,
    events: EventSink | None = None,
    resolver: TargetResolver | None = None,
) -> ImportOutcome:
    """Run one import synchronously.

    Args:
        source: Byte source to import.
        target: Default target collection.
        options: Import options.
        config: Runtime configuration.
        token: Optional cancellation token shared with the caller.
        events: Optional event sink receiving progress and terminal events.
        resolver: Optional resolver for Zip entry destinations.

    Returns:
        Terminal outcome; failures are reported in it, not raised.
    """
    coordinator = ImportCoordinator(
        source, target, options, config, token=token, events=events, resolver=resolver
    )
    return coordinator.run()


def run_import_in_background(
    executor: ThreadPoolExecutor,
    source: RawSource,
    target: TargetCollection,
    options: ImportOptions,
    config: DocportConfig,
    token: CancellationToken,
    events: EventSink | None = None,
    resolver: TargetResolver | None = None,
) -> Future[ImportOutcome]:
    """Submit an import to a worker thread so the caller can cancel it."""
    return executor.submit(
        run_import, source, target, options, config, token, events, resolver
    )


def _log_outcome(label: str, outcome: ImportOutcome, elapsed_seconds: float) -> None:
    fields = {
        "source": label,
        "status": outcome.status,
        "format": outcome.detected_format,
        "dry_run": outcome.dry_run,
        "inserted": outcome.result.inserted,
        "updated": outcome.result.updated,
        "skipped": outcome.result.skipped,
        "failed": outcome.result.failed,
        "elapsed_seconds": round(elapsed_seconds, 3),
    }
    if outcome.status == "failed":
        _LOGGER.error(
            "import_failed",
            error=str(outcome.error),
            error_type=type(outcome.error).__name__,
            **fields,
        )
    elif outcome.status == "cancelled":
        _LOGGER.warning("import_cancelled", **fields)
    else:
        _LOGGER.info("import_completed", **fields)
