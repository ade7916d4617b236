"""Import CLI command wiring.

This module registers the import subcommand and the shared helper that
runs one import against a MongoDB deployment and formats its summary.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from core.config import DocportConfig
from core.types import (
    SUPPORTED_CONFLICT_POLICIES,
    SUPPORTED_FORMATS,
    Destination,
    ImportOptions,
    ImportOutcome,
    parse_conflict_policy,
    parse_format_hint,
)
from ingest.pipeline import run_import
from ingest.progress import ProgressLogSink
from ingest.raw_source import close_source, open_source
from store.target import MongoTargetResolver


def add_import_command(subparsers: Any) -> None:
    """Register import subcommand."""
    parser = subparsers.add_parser("import", help="Import a file or s3:// object into MongoDB")
    parser.add_argument("source", help="Source file path or s3://bucket/key")
    parser.add_argument("--uri", help="MongoDB connection string (default DOCPORT_MONGO_URI)")
    parser.add_argument("--database", required=True, help="Target database")
    parser.add_argument(
        "--collection",
        help="Target collection (default: source file stem; ignored for Zip entries)",
    )
    parser.add_argument(
        "--policy",
        default="skip",
        choices=SUPPORTED_CONFLICT_POLICIES,
        help="How to resolve records whose key already exists",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview inserts and conflicts without writing",
    )
    parser.add_argument(
        "--format",
        choices=SUPPORTED_FORMATS,
        help="Skip detection and decode as this format",
    )
    parser.add_argument("--batch-size", type=int, help="Records per write batch")
    parser.add_argument(
        "--only-database",
        action="append",
        default=[],
        help="Import only this archive database (repeatable)",
    )
    parser.add_argument(
        "--only-collection",
        action="append",
        default=[],
        help="Import only this archive collection, as name or db.name (repeatable)",
    )


def run_import_command(config: DocportConfig, args: argparse.Namespace) -> int:
    """Handle import command invocation."""
    options = ImportOptions(
        policy=parse_conflict_policy(args.policy),
        dry_run=args.dry_run,
        format_hint=parse_format_hint(args.format) if args.format else None,
        batch_size=args.batch_size,
        databases=tuple(args.only_database),
        collections=tuple(args.only_collection),
    )
    outcome = import_into_mongo(
        config,
        source_uri=args.source,
        uri=args.uri,
        destination=Destination(args.database, args.collection or default_collection(args.source)),
        options=options,
    )
    for line in format_outcome(outcome):
        print(line)
    return 0 if outcome.status == "completed" else 1


def import_into_mongo(
    config: DocportConfig,
    source_uri: str,
    uri: str | None,
    destination: Destination,
    options: ImportOptions,
) -> ImportOutcome:
    """Run one import against MongoDB.

    Args:
        config: Runtime configuration.
        source_uri: Local path or S3 URI of the source.
        uri: Optional connection string overriding the configured one.
        destination: Default database and collection.
        options: Import options.

    Returns:
        Terminal import outcome.
    """
    source = open_source(source_uri, config)
    try:
        with MongoTargetResolver(uri or config.mongo_uri, config) as resolver:
            return run_import(
                source,
                resolver(destination),
                options,
                config,
                events=ProgressLogSink(source.label),
                resolver=resolver,
            )
    finally:
        close_source(source)


def default_collection(source_uri: str) -> str:
    """Derive a collection name from the source file name."""
    name = Path(source_uri.rstrip("/")).name
    return name.split(".", 1)[0] or name


def format_outcome(outcome: ImportOutcome) -> tuple[str, ...]:
    """Render an outcome as printable ``key=value`` lines."""
    lines = [
        f"status={outcome.status}",
        f"format={outcome.detected_format}",
        f"dry_run={str(outcome.dry_run).lower()}",
    ]
    if outcome.preview is not None:
        preview = outcome.preview
        lines.extend(
            [
                f"would_insert={preview.would_insert}",
                f"would_overwrite={preview.would_overwrite}",
                f"would_skip={preview.would_skip}",
                f"would_reject={preview.would_reject}",
                f"failed={preview.failed}",
            ]
        )
        if preview.conflict_sample:
            sample = ", ".join(repr(key) for key in preview.conflict_sample)
            lines.append(f"conflict_sample={sample}")
        if not preview.duplicates_exact:
            lines.append("duplicates_exact=false")
    else:
        result = outcome.result
        lines.extend(
            [
                f"inserted={result.inserted}",
                f"updated={result.updated}",
                f"skipped={result.skipped}",
                f"failed={result.failed}",
            ]
        )
        if result.indexes_created:
            lines.append(f"indexes_created={result.indexes_created}")
    for destination, counts in sorted(outcome.result.by_destination.items()):
        if not destination:
            continue
        lines.append(
            f"destination={destination} inserted={counts.inserted} updated={counts.updated} "
            f"skipped={counts.skipped} failed={counts.failed}"
        )
    for failure in outcome.result.failures:
        location = failure.location or "-"
        lines.append(f"failure={location}\t{failure.reason}")
    for error in outcome.result.errors:
        lines.append(f"warning={error}")
    if outcome.error is not None:
        lines.append(f"error={outcome.error}")
    return tuple(lines)
