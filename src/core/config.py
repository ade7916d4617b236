"""Runtime configuration model for Docport.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os

from core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONFLICT_SAMPLE_SIZE,
    DEFAULT_DRY_RUN_KEY_LIMIT,
    DEFAULT_MONGO_URI,
    DEFAULT_OPERATION_TIMEOUT_MS,
    DEFAULT_PROGRESS_QUEUE_SIZE,
    DEFAULT_SNIFF_BYTES,
    MAX_BATCH_SIZE,
)
from core.errors import DocportConfigError


@dataclass(frozen=True)
class DocportConfig:
    """Validated runtime configuration.

    Attributes:
        batch_size: Records per insert or existence-check batch.
        sniff_bytes: Prefix length read by the format sniffer.
        operation_timeout_ms: Per-call timeout for database round trips.
        conflict_sample_size: Maximum conflicting keys kept in dry-run previews.
        dry_run_key_limit: Maximum keys a dry run remembers to spot in-run duplicates.
        progress_queue_size: Capacity of the progress event channel.
        mongo_uri: Connection string used by the CLI target resolver.
        s3_region: Optional default AWS region for S3 sources.
        s3_profile: Optional AWS profile for boto3 session initialization.
    """

    batch_size: int = DEFAULT_BATCH_SIZE
    sniff_bytes: int = DEFAULT_SNIFF_BYTES
    operation_timeout_ms: int = DEFAULT_OPERATION_TIMEOUT_MS
    conflict_sample_size: int = DEFAULT_CONFLICT_SAMPLE_SIZE
    dry_run_key_limit: int = DEFAULT_DRY_RUN_KEY_LIMIT
    progress_queue_size: int = DEFAULT_PROGRESS_QUEUE_SIZE
    mongo_uri: str = DEFAULT_MONGO_URI
    s3_region: str | None = None
    s3_profile: str | None = None

    @classmethod
    def from_env(cls) -> "DocportConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            DocportConfigError: If environment values are invalid.
        """
        batch_size = _parse_positive_int("DOCPORT_BATCH_SIZE", DEFAULT_BATCH_SIZE)
        if batch_size > MAX_BATCH_SIZE:
            raise DocportConfigError(
                f"Invalid DOCPORT_BATCH_SIZE value: {batch_size} exceeds the "
                f"maximum of {MAX_BATCH_SIZE}. Use a smaller batch size."
            )
        return cls(
            batch_size=batch_size,
            sniff_bytes=_parse_positive_int("DOCPORT_SNIFF_BYTES", DEFAULT_SNIFF_BYTES),
            operation_timeout_ms=_parse_positive_int(
                "DOCPORT_OPERATION_TIMEOUT_MS", DEFAULT_OPERATION_TIMEOUT_MS
            ),
            conflict_sample_size=_parse_positive_int(
                "DOCPORT_CONFLICT_SAMPLE_SIZE", DEFAULT_CONFLICT_SAMPLE_SIZE
            ),
            dry_run_key_limit=_parse_positive_int(
                "DOCPORT_DRY_RUN_KEY_LIMIT", DEFAULT_DRY_RUN_KEY_LIMIT
            ),
            progress_queue_size=_parse_positive_int(
                "DOCPORT_PROGRESS_QUEUE_SIZE", DEFAULT_PROGRESS_QUEUE_SIZE
            ),
            mongo_uri=os.getenv("DOCPORT_MONGO_URI", DEFAULT_MONGO_URI),
            s3_region=os.getenv("DOCPORT_S3_REGION"),
            s3_profile=os.getenv("DOCPORT_S3_PROFILE"),
        )

    @property
    def operation_timeout_seconds(self) -> float:
        """Per-call timeout in seconds, as pymongo expects it."""
        return self.operation_timeout_ms / 1000.0


def _parse_positive_int(variable: str, default: int) -> int:
    """Parse a positive integer environment value.

    Args:
        variable: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed integer.

    Raises:
        DocportConfigError: If value is not a positive integer.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        parsed = int(raw_value)
    except ValueError as error:
        raise DocportConfigError(
            f"Invalid {variable} value: expected integer, got '{raw_value}'. "
            f"Set {variable} to a numeric value."
        ) from error
    if parsed <= 0:
        raise DocportConfigError(
            f"Invalid {variable} value: expected a positive integer, got {parsed}."
        )
    return parsed
