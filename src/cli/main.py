"""Docport CLI entry points.
This module exposes the detect, import, preview, and run-spec commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from typing import Any, Sequence

from cli.import_command import add_import_command, run_import_command
from cli.preview_command import add_preview_command, run_preview_command
from cli.run_spec_command import add_run_spec_command, run_run_spec_command
from core.config import DocportConfig
from core.errors import DocportError
from ingest.format_sniffer import detect_format
from ingest.raw_source import close_source, open_source


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="docport", description="Docport import CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_detect_command(subparsers)
    add_import_command(subparsers)
    add_preview_command(subparsers)
    add_run_spec_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Docport CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = DocportConfig.from_env()
        if args.command == "detect":
            return _run_detect_command(config, args)
        if args.command == "import":
            return run_import_command(config, args)
        if args.command == "preview":
            return run_preview_command(config, args)
        if args.command == "run-spec":
            return run_run_spec_command(config, args)
    except DocportError as error:
        print(f"error={error}")
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _run_detect_command(config: DocportConfig, args: argparse.Namespace) -> int:
    """Handle detect command.

    Args:
        config: Runtime config.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    source = open_source(args.source, config)
    try:
        print(detect_format(source, config.sniff_bytes))
    finally:
        close_source(source)
    return 0


def _add_detect_command(subparsers: Any) -> None:
    """Register detect subcommand."""
    parser = subparsers.add_parser("detect", help="Print the detected format of a source")
    parser.add_argument("source", help="Source file path or s3://bucket/key")
