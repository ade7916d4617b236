"""Unit tests for the dry-run planner."""

from __future__ import annotations

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from core.errors import TransportError
from core.types import BatchResult, Destination, FailureDescriptor, Record
from ingest.decode_types import DecodedRecord, IndexDefinition, IndexRestore
from store.dry_run_planner import DryRunPlanner
from tests.fake_collection import FakeCollection


class _UnreachableCollection(FakeCollection):
    def find(self, filter, projection=None):
        raise ServerSelectionTimeoutError("no servers available")


def _records(*keys: str | None) -> list[DecodedRecord]:
    records = []
    for index, key in enumerate(keys):
        mapping = {"name": f"row-{index}"} if key is None else {"_id": key}
        records.append(DecodedRecord(Record.from_mapping(mapping), f"input:{index + 1}"))
    return records


def _existing() -> FakeCollection:
    return FakeCollection([{"_id": "K1"}, {"_id": "K2"}])


def test_plan_counts_skips_without_writing() -> None:
    """Skip previews should count conflicts as skips and leave the target alone."""
    target = _existing()

    preview = DryRunPlanner("skip", 5.0).plan(target, _records("K1", "K3"), batch_size=500)

    assert (preview.would_insert, preview.would_skip, target.insert_calls, len(target.documents)) == (
        1,
        1,
        0,
        2,
    )


def test_plan_reject_lists_conflicting_keys() -> None:
    """Reject previews should record a failure for each conflict."""
    preview = DryRunPlanner("reject", 5.0).plan(_existing(), _records("K1", "K3"), batch_size=500)

    assert (preview.would_reject, [failure.key for failure in preview.failures]) == (1, ["K1"])


def test_plan_overwrite_counts_updates() -> None:
    """Overwrite previews should count conflicts as would-overwrite."""
    preview = DryRunPlanner("overwrite", 5.0).plan(_existing(), _records("K1", "K2", "K3"), batch_size=2)

    assert (preview.would_overwrite, preview.would_insert) == (2, 1)


def test_plan_issues_one_lookup_per_batch() -> None:
    """Existence checks should be batched rather than per record."""
    target = _existing()

    DryRunPlanner("skip", 5.0).plan(target, _records("K1", "K2", "K3", "K4", "K5"), batch_size=2)

    assert target.find_calls == 3


def test_plan_treats_repeated_keys_in_input_as_conflicts() -> None:
    """A key seen earlier in the same run should conflict like a stored key."""
    preview = DryRunPlanner("skip", 5.0).plan(FakeCollection(), _records("K9", "K9"), batch_size=1)

    assert (preview.would_insert, preview.would_skip) == (1, 1)


def test_plan_counts_keyless_records_as_inserts() -> None:
    """Records without a key will receive a generated one, so they cannot conflict."""
    preview = DryRunPlanner("skip", 5.0).plan(_existing(), _records(None, None), batch_size=10)

    assert preview.would_insert == 2


def test_plan_caps_conflict_sample() -> None:
    """The conflict sample should not exceed its configured size."""
    target = FakeCollection([{"_id": f"K{index}"} for index in range(5)])

    preview = DryRunPlanner("skip", 5.0, sample_size=3).plan(
        target, _records(*[f"K{index}" for index in range(5)]), batch_size=10
    )

    assert (preview.would_skip, preview.conflict_sample) == (5, ["K0", "K1", "K2"])


def test_record_failure_counts_decode_failures() -> None:
    """Decode failures should appear in both the preview and the result."""
    planner = DryRunPlanner("skip", 5.0)
    result = BatchResult()

    planner.record_failure(FailureDescriptor(None, "Malformed JSON line", "input:3"), None, result)

    assert (planner.preview.failed, result.failed) == (1, 1)


def test_plan_raises_transport_error_when_lookup_fails() -> None:
    """A failed existence check should abort the preview."""
    with pytest.raises(TransportError):
        DryRunPlanner("skip", 5.0).plan(_UnreachableCollection(), _records("K1"), batch_size=10)


def test_plan_matches_stored_double_key_against_int_key() -> None:
    """A stored 1.0 key should be a conflict for an imported 1, as the writer sees it."""
    target = FakeCollection([{"_id": 1.0}])
    records = [DecodedRecord(Record.from_mapping({"_id": 1}), "input:1")]

    preview = DryRunPlanner("skip", 5.0).plan(target, records, batch_size=10)

    assert (preview.would_insert, preview.would_skip) == (0, 1)


def test_plan_stops_remembering_keys_past_the_limit() -> None:
    """Past the key limit, repeats inside the input are no longer caught."""
    preview = DryRunPlanner("skip", 5.0, key_limit=2).plan(
        FakeCollection(), _records("K1", "K2", "K3", "K3"), batch_size=10
    )

    assert (preview.would_insert, preview.would_skip, preview.duplicates_exact) == (4, 0, False)


def test_plan_within_key_limit_stays_exact() -> None:
    """Previews that never hit the key limit report exact duplicate detection."""
    preview = DryRunPlanner("skip", 5.0, key_limit=10).plan(
        FakeCollection(), _records("K1", "K1"), batch_size=10
    )

    assert (preview.would_skip, preview.duplicates_exact) == (1, True)


def test_restore_indexes_leaves_target_untouched() -> None:
    """Dry runs never create indexes."""
    target = FakeCollection()
    restore = IndexRestore(
        Destination("shop", "orders"), (IndexDefinition(keys=(("sku", 1),)),), "backup.zip"
    )
    result = BatchResult()

    DryRunPlanner("skip", 5.0).restore_indexes(target, restore, result)

    assert (target.indexes, result.indexes_created) == ([], 0)
