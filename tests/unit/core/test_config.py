"""Unit tests for core config parsing."""

from __future__ import annotations

import pytest

from core.config import DocportConfig
from core.errors import DocportConfigError


def test_from_env_uses_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should fall back to documented defaults when env is unset."""
    for variable in ("DOCPORT_BATCH_SIZE", "DOCPORT_SNIFF_BYTES", "DOCPORT_MONGO_URI"):
        monkeypatch.delenv(variable, raising=False)

    config = DocportConfig.from_env()

    assert (config.batch_size, config.sniff_bytes, config.mongo_uri) == (
        500,
        8192,
        "mongodb://localhost:27017",
    )


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should read batch size and timeout from the environment."""
    monkeypatch.setenv("DOCPORT_BATCH_SIZE", "250")
    monkeypatch.setenv("DOCPORT_OPERATION_TIMEOUT_MS", "1500")

    config = DocportConfig.from_env()

    assert (config.batch_size, config.operation_timeout_seconds) == (250, 1.5)


def test_from_env_raises_for_invalid_batch_size(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should fail for a non-numeric batch size."""
    monkeypatch.setenv("DOCPORT_BATCH_SIZE", "lots")

    with pytest.raises(DocportConfigError, match="DOCPORT_BATCH_SIZE"):
        DocportConfig.from_env()


def test_from_env_raises_for_oversized_batch(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should reject batch sizes above the supported maximum."""
    monkeypatch.setenv("DOCPORT_BATCH_SIZE", "1000000")

    with pytest.raises(DocportConfigError):
        DocportConfig.from_env()


def test_from_env_raises_for_non_positive_sniff_bytes(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should reject a zero sniff window."""
    monkeypatch.setenv("DOCPORT_SNIFF_BYTES", "0")

    with pytest.raises(DocportConfigError, match="DOCPORT_SNIFF_BYTES"):
        DocportConfig.from_env()


def test_from_env_reads_dry_run_key_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    """The dry-run key limit should be configurable and default to one million."""
    monkeypatch.delenv("DOCPORT_DRY_RUN_KEY_LIMIT", raising=False)
    default_limit = DocportConfig.from_env().dry_run_key_limit
    monkeypatch.setenv("DOCPORT_DRY_RUN_KEY_LIMIT", "5000")

    assert (default_limit, DocportConfig.from_env().dry_run_key_limit) == (1_000_000, 5000)
