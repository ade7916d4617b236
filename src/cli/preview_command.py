"""Preview CLI command wiring.

This module registers the preview subcommand, which lists the databases
and collections a Zip archive would import without connecting anywhere.
"""

from __future__ import annotations

import argparse
from typing import Any

from core.config import DocportConfig
from ingest.raw_source import close_source, open_source
from ingest.zip_decoder import ArchivePreview, preview_archive


def add_preview_command(subparsers: Any) -> None:
    """Register preview subcommand."""
    parser = subparsers.add_parser(
        "preview",
        help="List the databases and collections inside a Zip archive",
    )
    parser.add_argument("source", help="Archive file path or s3://bucket/key")


def run_preview_command(config: DocportConfig, args: argparse.Namespace) -> int:
    """Handle preview command invocation."""
    source = open_source(args.source, config)
    try:
        preview = preview_archive(source)
    finally:
        close_source(source)
    for line in format_preview(preview):
        print(line)
    return 0


def format_preview(preview: ArchivePreview) -> tuple[str, ...]:
    """Render an archive preview as printable ``key=value`` lines."""
    lines = [f"source={preview.label}"]
    if preview.exported_at:
        lines.append(f"exported_at={preview.exported_at}")
    for database, collections in preview.databases().items():
        counts = [collection.document_count for collection in collections]
        documents = "-" if None in counts else str(sum(count or 0 for count in counts))
        lines.append(f"database={database} collections={len(collections)} documents={documents}")
        for collection in collections:
            count = "-" if collection.document_count is None else collection.document_count
            lines.append(f"collection={collection.destination} documents={count}")
    return tuple(lines)
