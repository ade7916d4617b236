"""Docport exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations

from typing import Any


class DocportError(Exception):
    """Base exception for all Docport failures."""


class DocportConfigError(DocportError):
    """Raised for invalid runtime configuration."""


class DocportDependencyError(DocportError):
    """Raised when an optional runtime dependency is missing."""


class ImportSpecError(DocportError):
    """Raised for invalid or unsupported import-spec files."""


class ClassificationError(DocportError):
    """Raised when a source cannot be classified into a decodable format."""


class DecodeError(DocportError):
    """Raised when a whole document cannot be decoded."""


class ConflictError(DocportError):
    """Describes a duplicate-key conflict on a single record."""

    def __init__(self, key: object, message: str) -> None:
        super().__init__(message)
        self.key = key


class TransportError(DocportError):
    """Raised for fatal write-path failures such as auth, network, or timeout.

    Attributes:
        partial_result: Result accumulated before the failing batch, when known.
    """

    def __init__(self, message: str, partial_result: Any | None = None) -> None:
        super().__init__(message)
        self.partial_result = partial_result


class ImportStateError(DocportError):
    """Raised when an import coordinator is driven out of order."""
