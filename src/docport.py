"""Public SDK surface for Docport.

This module provides a stable import path for SDK users.
It re-exports the import entry points and typed option models.
"""

from __future__ import annotations

from core.cancellation import CancellationToken
from core.config import DocportConfig
from core.types import (
    BatchResult,
    ConflictPolicy,
    Destination,
    DryRunPreview,
    FailureDescriptor,
    ImportOptions,
    ImportOutcome,
    ProgressSnapshot,
)
from ingest.format_sniffer import detect_format
from ingest.pipeline import ImportCoordinator, run_import, run_import_in_background
from ingest.progress import EventSink, ProgressChannel, ProgressLogSink
from ingest.raw_source import BytesSource, FileSource, open_source
from ingest.zip_decoder import ArchiveCollection, ArchivePreview, preview_archive
from store.target import MongoTargetResolver, TargetCollection, TargetResolver

__all__ = [
    "ArchiveCollection",
    "ArchivePreview",
    "BatchResult",
    "BytesSource",
    "CancellationToken",
    "ConflictPolicy",
    "Destination",
    "DocportConfig",
    "DryRunPreview",
    "EventSink",
    "FailureDescriptor",
    "FileSource",
    "ImportCoordinator",
    "ImportOptions",
    "ImportOutcome",
    "MongoTargetResolver",
    "ProgressChannel",
    "ProgressLogSink",
    "ProgressSnapshot",
    "TargetCollection",
    "TargetResolver",
    "detect_format",
    "open_source",
    "preview_archive",
    "run_import",
    "run_import_in_background",
]
