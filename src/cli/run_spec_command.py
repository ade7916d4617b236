"""Run-spec CLI command wiring.

This module registers the run-spec subcommand, which runs every import
listed in a YAML import spec in order and prints one summary per import.
"""

from __future__ import annotations

import argparse
from typing import Any

from core.config import DocportConfig
from core.import_spec import ImportSpecEntry, load_import_spec
from core.types import Destination, ImportOptions
from cli.import_command import default_collection, format_outcome, import_into_mongo


def add_run_spec_command(subparsers: Any) -> None:
    """Register run-spec subcommand."""
    parser = subparsers.add_parser(
        "run-spec",
        help="Run the imports listed in a YAML import spec",
    )
    parser.add_argument("spec_file", help="Path to YAML import-spec file")


def run_run_spec_command(config: DocportConfig, args: argparse.Namespace) -> int:
    """Handle run-spec command invocation."""
    spec = load_import_spec(args.spec_file)
    exit_code = 0
    for entry in spec.imports:
        print(f"source={entry.source}")
        outcome = import_into_mongo(
            config,
            source_uri=entry.source,
            uri=spec.defaults.uri,
            destination=_entry_destination(entry),
            options=_entry_options(entry),
        )
        for line in format_outcome(outcome):
            print(line)
        if outcome.status != "completed":
            exit_code = 1
    return exit_code


def _entry_destination(entry: ImportSpecEntry) -> Destination:
    return Destination(entry.database, entry.collection or default_collection(entry.source))


def _entry_options(entry: ImportSpecEntry) -> ImportOptions:
    return ImportOptions(
        policy=entry.policy,
        dry_run=entry.dry_run,
        format_hint=entry.format_hint,
        databases=entry.only_databases,
        collections=entry.only_collections,
    )
