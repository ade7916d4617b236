"""Unit tests for the import coordinator."""

from __future__ import annotations

import io
import zipfile
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.cancellation import CancellationToken
from core.config import DocportConfig
from core.errors import ClassificationError, ImportStateError, TransportError
from core.types import Destination, ImportOptions, ProgressSnapshot
from ingest.pipeline import ImportCoordinator, run_import, run_import_in_background
from ingest.progress import ProgressChannel
from ingest.raw_source import BytesSource
from tests.fake_collection import FakeCollection, ndjson_bytes

_KEYS = [f"K{index}" for index in range(10)]


class _RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def emit(self, event: str, payload: object) -> None:
        self.events.append((event, payload))

    def snapshots(self) -> list[ProgressSnapshot]:
        return [payload for event, payload in self.events if event == "import:progress"]

    def terminal_events(self) -> list[str]:
        return [event for event, _ in self.events if event != "import:progress"]


class _CancelAfterBatchSink(_RecordingSink):
    def __init__(self, token: CancellationToken, batch_number: int) -> None:
        super().__init__()
        self._token = token
        self._batch_number = batch_number

    def emit(self, event: str, payload: object) -> None:
        super().emit(event, payload)
        if len(self.snapshots()) == self._batch_number:
            self._token.cancel()


class _FakeLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, object]]] = []

    def info(self, event: str, **fields: object) -> None:
        self.events.append((event, fields))

    def warning(self, event: str, **fields: object) -> None:
        self.events.append((event, fields))

    def error(self, event: str, **fields: object) -> None:
        self.events.append((event, fields))

    def debug(self, event: str, **fields: object) -> None:
        self.events.append((event, fields))


def _source(data: bytes = ndjson_bytes(_KEYS), label: str = "orders.ndjson") -> BytesSource:
    return BytesSource(data, label=label)


def _options(**overrides: object) -> ImportOptions:
    return ImportOptions(batch_size=2, **overrides)  # type: ignore[arg-type]


def test_run_import_completes_and_counts_every_record() -> None:
    """A clean import should insert every record and report completed."""
    target = FakeCollection()

    outcome = run_import(_source(), target, _options(), DocportConfig())

    assert (outcome.status, outcome.detected_format, outcome.result.inserted, len(target.documents)) == (
        "completed",
        "ndjson",
        10,
        10,
    )


def test_run_import_snapshots_grow_and_match_counters() -> None:
    """Every snapshot should be monotonic and end at the counter total."""
    sink = _RecordingSink()

    outcome = run_import(_source(), FakeCollection(), _options(), DocportConfig(), events=sink)
    processed = [snapshot.records_processed for snapshot in sink.snapshots()]

    assert processed == [2, 4, 6, 8, 10] and processed[-1] == outcome.result.records_processed


def test_run_import_reports_total_estimate_in_snapshots() -> None:
    """Snapshots should carry the decoder's total estimate."""
    sink = _RecordingSink()

    run_import(_source(), FakeCollection(), _options(), DocportConfig(), events=sink)

    assert {snapshot.total_estimate for snapshot in sink.snapshots()} == {10}


def test_run_import_emits_exactly_one_terminal_event() -> None:
    """The terminal event should be emitted once, after all progress events."""
    sink = _RecordingSink()

    run_import(_source(), FakeCollection(), _options(), DocportConfig(), events=sink)

    assert sink.terminal_events() == ["import:complete"] and sink.events[-1][0] == "import:complete"


def test_run_import_cancels_after_second_batch() -> None:
    """Cancelling after batch 2 of 5 should keep exactly two batches applied."""
    token = CancellationToken()
    sink = _CancelAfterBatchSink(token, batch_number=2)
    target = FakeCollection()

    outcome = run_import(_source(), target, _options(), DocportConfig(), token=token, events=sink)

    assert (outcome.status, outcome.result.inserted, len(target.documents), sink.terminal_events()) == (
        "cancelled",
        4,
        4,
        ["import:cancelled"],
    )


def test_run_import_fails_on_transport_error_with_partial_result() -> None:
    """A network failure on batch 3 of 5 should keep batches 1 and 2."""
    target = FakeCollection(fail_on_insert_call=3)
    sink = _RecordingSink()

    outcome = run_import(_source(), target, _options(), DocportConfig(), events=sink)

    assert (
        outcome.status,
        outcome.result.inserted,
        isinstance(outcome.error, TransportError),
        sink.terminal_events(),
    ) == ("failed", 4, True, ["import:error"])


def test_run_import_fails_for_unclassified_source() -> None:
    """Unknown content should fail before any write."""
    target = FakeCollection()

    outcome = run_import(_source(b"plain prose\n", "notes.txt"), target, _options(), DocportConfig())

    assert (outcome.status, isinstance(outcome.error, ClassificationError), target.insert_calls) == (
        "failed",
        True,
        0,
    )


def test_run_import_counts_decode_failures_and_continues() -> None:
    """Malformed NDJSON lines should be failed records, not fatal errors."""
    data = b'{"_id": "a"}\n{"_id": \n{"_id": "b"}\n'

    outcome = run_import(_source(data), FakeCollection(), _options(), DocportConfig())

    assert (outcome.status, outcome.result.inserted, outcome.result.failed) == ("completed", 2, 1)


def test_run_import_applies_conflict_policy() -> None:
    """Existing keys should be skipped under the skip policy."""
    target = FakeCollection([{"_id": "K1"}, {"_id": "K2"}])

    outcome = run_import(_source(), target, _options(policy="skip"), DocportConfig())

    assert (outcome.result.inserted, outcome.result.skipped) == (8, 2)


def test_run_import_dry_run_matches_real_counts_without_writing() -> None:
    """Dry-run counters should equal a real run's counters on the same state."""
    existing = [{"_id": "K1"}, {"_id": "K2"}]
    preview_target = FakeCollection(existing)
    real_target = FakeCollection(existing)

    preview = run_import(_source(), preview_target, _options(policy="reject", dry_run=True), DocportConfig())
    real = run_import(_source(), real_target, _options(policy="reject"), DocportConfig())

    assert (
        preview.result.inserted,
        preview.result.failed,
        preview.preview.would_reject,
        len(preview_target.documents),
    ) == (real.result.inserted, real.result.failed, 2, 2)


def test_run_import_honors_format_hint() -> None:
    """An explicit format should bypass detection."""
    outcome = run_import(
        _source(b"_id;name\nu1;Ada\n", "users.txt"),
        FakeCollection(),
        _options(format_hint="csv"),
        DocportConfig(),
    )

    assert (outcome.detected_format, outcome.result.inserted) == ("csv", 1)


def test_run_import_routes_zip_entries_through_resolver() -> None:
    """Zip entries should be written to the collection their path names."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("shop/orders.ndjson", ndjson_bytes(["o1", "o2", "o3"]))
        archive.writestr("shop/customers.json", b'[{"_id": "c1"}]')
    collections: dict[Destination, FakeCollection] = {}

    def resolver(destination: Destination) -> FakeCollection:
        return collections.setdefault(destination, FakeCollection())

    outcome = run_import(
        BytesSource(buffer.getvalue(), label="backup.zip"),
        FakeCollection(),
        _options(),
        DocportConfig(),
        resolver=resolver,
    )

    assert (
        len(collections[Destination("shop", "orders")].documents),
        len(collections[Destination("shop", "customers")].documents),
        outcome.result.by_destination["shop.orders"].inserted,
    ) == (3, 1, 3)


def test_coordinator_refuses_a_second_run() -> None:
    """A finished coordinator should not run again."""
    coordinator = ImportCoordinator(_source(), FakeCollection(), _options(), DocportConfig())
    coordinator.run()

    with pytest.raises(ImportStateError):
        coordinator.run()


def test_run_import_logs_cancellation(monkeypatch: pytest.MonkeyPatch) -> None:
    """Cancelled imports should log import_cancelled with counters."""
    fake_logger = _FakeLogger()
    monkeypatch.setattr("ingest.pipeline._LOGGER", fake_logger)
    token = CancellationToken()
    token.cancel()

    run_import(_source(), FakeCollection(), _options(), DocportConfig(), token=token)
    event_names = [event for event, _ in fake_logger.events]

    assert event_names == ["import_started", "import_cancelled"]


def test_run_import_in_background_returns_outcome_future() -> None:
    """Background imports should resolve to the terminal outcome."""
    token = CancellationToken()
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = run_import_in_background(
            executor, _source(), FakeCollection(), _options(), DocportConfig(), token
        )
        outcome = future.result(timeout=10)

    assert outcome.status == "completed"


def test_coordinator_defaults_to_progress_channel() -> None:
    """Without an explicit sink, events should land in a progress channel."""
    coordinator = ImportCoordinator(_source(), FakeCollection(), _options(), DocportConfig())

    coordinator.run()
    latest = coordinator.events.latest() if isinstance(coordinator.events, ProgressChannel) else None

    assert latest is not None and latest.records_processed == 10


def test_run_import_dry_run_result_matches_preview_mapping() -> None:
    """The dry-run result should equal the preview mapped onto real counters."""
    target = FakeCollection([{"_id": "K3"}])

    outcome = run_import(_source(), target, _options(policy="overwrite", dry_run=True), DocportConfig())
    mapped = outcome.preview.to_batch_result()

    assert (mapped.inserted, mapped.updated, mapped.skipped, mapped.failed) == (
        outcome.result.inserted,
        outcome.result.updated,
        outcome.result.skipped,
        outcome.result.failed,
    )


class _BrokenSource(BytesSource):
    def read_prefix(self, length: int) -> bytes:
        raise RuntimeError("backend unavailable")


def test_run_import_reports_unexpected_errors_as_failed() -> None:
    """Unexpected source errors should end in a failed outcome, not an exception."""
    sink = _RecordingSink()

    outcome = run_import(
        _BrokenSource(b"", label="broken.ndjson"),
        FakeCollection(),
        _options(),
        DocportConfig(),
        events=sink,
    )

    assert (outcome.status, str(outcome.error), sink.terminal_events()) == (
        "failed",
        "backend unavailable",
        ["import:error"],
    )


def test_run_import_handles_ndjson_lines_longer_than_sniff_window() -> None:
    """NDJSON with records wider than half the sniff window should import."""
    padding = "x" * 5000
    data = "".join(f'{{"_id": {index}, "pad": "{padding}"}}\n' for index in range(3)).encode()
    target = FakeCollection()

    outcome = run_import(_source(data, "wide.ndjson"), target, _options(), DocportConfig())

    assert (outcome.status, outcome.detected_format, len(target.documents)) == (
        "completed",
        "ndjson",
        3,
    )


def _export_archive() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("shop/orders/documents.ndjson", ndjson_bytes(["o1", "o2", "o3"]))
        archive.writestr(
            "shop/orders/indexes.json",
            b'[{"name": "_id_", "key": {"_id": 1}},'
            b' {"name": "sku_1", "key": {"sku": 1}, "unique": true},'
            b' {"name": "broken_1", "key": {"broken": 1}}]',
        )
        archive.writestr("crm/people/documents.ndjson", ndjson_bytes(["p1"]))
    return buffer.getvalue()


def test_run_import_restores_exported_indexes_after_documents() -> None:
    """Index failures are reported on a completed import, not raised."""
    collections: dict[Destination, FakeCollection] = {
        Destination("shop", "orders"): FakeCollection(failing_indexes=["broken_1"])
    }

    def resolver(destination: Destination) -> FakeCollection:
        return collections.setdefault(destination, FakeCollection())

    outcome = run_import(
        BytesSource(_export_archive(), label="export.zip"),
        FakeCollection(),
        _options(),
        DocportConfig(),
        resolver=resolver,
    )
    orders = collections[Destination("shop", "orders")]

    assert (
        outcome.status,
        len(orders.documents),
        [options["name"] for _, options in orders.indexes],
        outcome.result.indexes_created,
        len(outcome.result.errors),
    ) == ("completed", 3, ["sku_1"], 1, 1)


def test_run_import_loads_only_selected_databases() -> None:
    """Archive entries outside the selected databases are not written."""
    collections: dict[Destination, FakeCollection] = {}

    def resolver(destination: Destination) -> FakeCollection:
        return collections.setdefault(destination, FakeCollection())

    outcome = run_import(
        BytesSource(_export_archive(), label="export.zip"),
        FakeCollection(),
        _options(databases=("crm",)),
        DocportConfig(),
        resolver=resolver,
    )

    assert (outcome.result.inserted, list(collections)) == (1, [Destination("crm", "people")])
