"""Shared typed models.

This module defines the data models used by the sniffer, decoders,
writer, planner, and coordinator to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping

from core.constants import DEFAULT_PRIMARY_KEY_FIELD
from core.errors import DocportConfigError
from core.values import TaggedValue, ValueKind, from_native, to_native

DetectedFormat = Literal["zip", "jsonarray", "ndjson", "csv", "unknown"]
SUPPORTED_FORMATS: tuple[DetectedFormat, ...] = ("zip", "jsonarray", "ndjson", "csv")

ConflictPolicy = Literal["skip", "overwrite", "reject"]
SUPPORTED_CONFLICT_POLICIES: tuple[ConflictPolicy, ...] = ("skip", "overwrite", "reject")

ImportStatus = Literal["idle", "running", "completed", "cancelled", "failed"]


@dataclass(frozen=True)
class Destination:
    """Target database/collection pair derived from a Zip entry path."""

    database: str
    collection: str

    def __str__(self) -> str:
        return f"{self.database}.{self.collection}"


@dataclass(frozen=True)
class Record:
    """Ordered mapping of field names to tagged values.

    Attributes:
        fields: Field name/value pairs in source order.
    """

    fields: tuple[tuple[str, TaggedValue], ...]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> "Record":
        """Build a record from a decoded mapping, tagging every value.

        Raises:
            UnsupportedValueError: If a value has no tagged representation.
        """
        return cls(tuple((str(name), from_native(value)) for name, value in mapping.items()))

    def get(self, name: str) -> TaggedValue | None:
        """Return the tagged value for a field, if present."""
        for field_name, value in self.fields:
            if field_name == name:
                return value
        return None

    def key(self, key_field: str = DEFAULT_PRIMARY_KEY_FIELD) -> object | None:
        """Return the native primary-key value, or None when absent."""
        value = self.get(key_field)
        if value is None:
            return None
        return to_native(value)

    def to_document(self) -> dict[str, object]:
        """Convert to a BSON-encodable document."""
        return {name: to_native(value) for name, value in self.fields}


@dataclass(frozen=True)
class SchemaColumn:
    """One advisory CSV column type."""

    name: str
    kind: ValueKind


@dataclass(frozen=True)
class Schema:
    """Best-effort column layout inferred from leading CSV rows."""

    columns: tuple[SchemaColumn, ...]
    delimiter: str
    sampled_rows: int


@dataclass(frozen=True)
class FailureDescriptor:
    """One failed record.

    Attributes:
        key: Primary-key value when known, else None.
        reason: Human-readable failure reason.
        location: Source location such as ``orders.ndjson:12``.
    """

    key: object | None
    reason: str
    location: str | None = None


@dataclass
class DestinationCounts:
    """Counters for one destination collection."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class BatchResult:
    """Monotonically accumulated outcome counters for one import.

    ``errors`` holds problems that are not tied to a record, such as an
    index that could not be recreated; they never count as processed.
    """

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[FailureDescriptor] = field(default_factory=list)
    by_destination: dict[str, DestinationCounts] = field(default_factory=dict)
    indexes_created: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def records_processed(self) -> int:
        """Total records accounted for by the four counters."""
        return self.inserted + self.updated + self.skipped + self.failed

    def add_inserted(self, count: int, destination: Destination | None = None) -> None:
        self.inserted += count
        self._counts_for(destination).inserted += count

    def add_updated(self, count: int, destination: Destination | None = None) -> None:
        self.updated += count
        self._counts_for(destination).updated += count

    def add_skipped(self, count: int, destination: Destination | None = None) -> None:
        self.skipped += count
        self._counts_for(destination).skipped += count

    def add_failure(
        self,
        failure: FailureDescriptor,
        destination: Destination | None = None,
    ) -> None:
        self.failed += 1
        self.failures.append(failure)
        self._counts_for(destination).failed += 1

    def merge(self, other: "BatchResult") -> None:
        """Fold another result into this one, keeping failure order."""
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        self.failures.extend(other.failures)
        self.indexes_created += other.indexes_created
        self.errors.extend(other.errors)
        for name, counts in other.by_destination.items():
            target = self.by_destination.setdefault(name, DestinationCounts())
            target.inserted += counts.inserted
            target.updated += counts.updated
            target.skipped += counts.skipped
            target.failed += counts.failed

    def _counts_for(self, destination: Destination | None) -> DestinationCounts:
        name = str(destination) if destination is not None else ""
        return self.by_destination.setdefault(name, DestinationCounts())


@dataclass
class DryRunPreview:
    """Non-mutating preview with the same counter shape as BatchResult."""

    policy: ConflictPolicy
    would_insert: int = 0
    would_overwrite: int = 0
    would_skip: int = 0
    would_reject: int = 0
    failed: int = 0
    conflict_sample: list[object] = field(default_factory=list)
    failures: list[FailureDescriptor] = field(default_factory=list)
    duplicates_exact: bool = True

    @property
    def records_processed(self) -> int:
        return (
            self.would_insert
            + self.would_overwrite
            + self.would_skip
            + self.would_reject
            + self.failed
        )

    def to_batch_result(self) -> BatchResult:
        """Map preview labels onto the counters a real import would report."""
        return BatchResult(
            inserted=self.would_insert,
            updated=self.would_overwrite,
            skipped=self.would_skip,
            failed=self.would_reject + self.failed,
            failures=list(self.failures),
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time import progress published after every batch.

    Attributes:
        records_processed: Records accounted for so far.
        total_estimate: Estimated total records, when the decoder knows it.
        elapsed_ms: Milliseconds since the import started running.
        cancelled: Whether cancellation had been requested at publish time.
        batches_completed: Batches submitted so far.
        destination: Destination of the latest batch, if any.
    """

    records_processed: int
    total_estimate: int | None
    elapsed_ms: int
    cancelled: bool
    batches_completed: int = 0
    destination: str | None = None


@dataclass(frozen=True)
class ImportOutcome:
    """Terminal import outcome.

    Attributes:
        status: One of completed, cancelled, failed.
        result: Accumulated counters; for dry runs, the mapped preview counters.
        detected_format: Format the source was decoded as.
        dry_run: Whether the import ran in preview mode.
        preview: Dry-run preview, when dry_run is set.
        error: Fatal error for failed imports.
    """

    status: ImportStatus
    result: BatchResult
    detected_format: DetectedFormat
    dry_run: bool
    preview: DryRunPreview | None = None
    error: Exception | None = None


@dataclass(frozen=True)
class ImportOptions:
    """Import request options.

    Attributes:
        policy: Conflict policy applied to duplicate keys.
        dry_run: Preview without mutating the target.
        format_hint: Explicit format that bypasses sniffing.
        batch_size: Optional override of the configured batch size.
        key_field: Primary-key field name.
        databases: Archive databases to import; empty selects all.
        collections: Archive collections to import, as ``name`` or
            ``database.name``; empty selects all.
    """

    policy: ConflictPolicy = "skip"
    dry_run: bool = False
    format_hint: DetectedFormat | None = None
    batch_size: int | None = None
    key_field: str = DEFAULT_PRIMARY_KEY_FIELD
    databases: tuple[str, ...] = ()
    collections: tuple[str, ...] = ()

    def selects(self, destination: Destination) -> bool:
        """Check whether an archive destination passes the selection."""
        if self.databases and destination.database not in self.databases:
            return False
        if not self.collections:
            return True
        return (
            destination.collection in self.collections
            or str(destination) in self.collections
        )


def parse_conflict_policy(raw_value: object) -> ConflictPolicy:
    """Validate a conflict policy name.

    Raises:
        DocportConfigError: If the name is not a supported policy.
    """
    normalized = str(raw_value).strip().lower()
    for policy in SUPPORTED_CONFLICT_POLICIES:
        if policy == normalized:
            return policy
    raise DocportConfigError(
        f"Unsupported conflict policy {raw_value!r}. "
        f"Use one of: {', '.join(SUPPORTED_CONFLICT_POLICIES)}."
    )


def parse_format_hint(raw_value: object) -> DetectedFormat:
    """Validate an explicit format hint.

    Raises:
        DocportConfigError: If the name is not a decodable format.
    """
    normalized = str(raw_value).strip().lower()
    for detected_format in SUPPORTED_FORMATS:
        if detected_format == normalized:
            return detected_format
    raise DocportConfigError(
        f"Unsupported format hint {raw_value!r}. "
        f"Use one of: {', '.join(SUPPORTED_FORMATS)}."
    )
