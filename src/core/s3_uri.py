"""S3 URI parsing helpers.

This module centralizes S3 URI parsing for import sources.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import DecodeError


@dataclass(frozen=True)
class S3Location:
    """Parsed S3 object location."""

    bucket: str
    key: str


def parse_s3_uri(uri: str) -> S3Location:
    """Parse and validate an S3 object URI.

    Args:
        uri: URI in format ``s3://bucket/key``.

    Returns:
        Parsed bucket and key pair.

    Raises:
        DecodeError: If the URI is missing a bucket or key.
    """
    if not uri.startswith("s3://"):
        raise DecodeError(f"Invalid S3 URI '{uri}': expected the s3:// scheme.")
    bucket, _, key = uri.removeprefix("s3://").partition("/")
    if not bucket or not key or key.endswith("/"):
        raise DecodeError(
            f"Invalid S3 URI '{uri}': expected s3://bucket/key. "
            "Provide both bucket and object key."
        )
    return S3Location(bucket=bucket, key=key)
