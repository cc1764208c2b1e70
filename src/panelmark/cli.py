#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Command line interface for panelmark.

Commands
--------
serialize INPUT [--selector CSS] [-o OUT]
    Convert a saved panel HTML file to Markdown.
render INPUT [-c CONFIG] [-o OUT]
    Mount panelmark on a saved panel HTML file, run one full scan, wait for
    every math and diagram render and write the resulting HTML.
config [-c CONFIG] [--rich]
    Print the effective configuration.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from bs4 import BeautifulSoup

from panelmark import __version__
from panelmark.appearance import document_root
from panelmark.config import PanelConfig, load_config
from panelmark.exceptions import ConfigError
from panelmark.logging_utils import configure_logging
from panelmark.mount import PanelMount
from panelmark.mutations import MutationHub
from panelmark.serializer import serialize

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panelmark",
        description="Serialize rendered chat panel content to Markdown and render math and diagrams in it.",
    )
    parser.add_argument("--version", action="version", version=f"panelmark {__version__}")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: WARNING)",
    )
    parser.add_argument("--log-file", help="Also write log output to this file")
    parser.add_argument("--trace", action="store_true", help="Debug logging with timestamps and logger names")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    serialize_parser = subparsers.add_parser("serialize", help="Convert panel HTML to Markdown")
    serialize_parser.add_argument("input", help="HTML file to read ('-' for stdin)")
    serialize_parser.add_argument("--selector", help="CSS selector of the element to serialize")
    serialize_parser.add_argument("-o", "--out", help="Output file (default: stdout)")

    render_parser = subparsers.add_parser("render", help="Render math and diagrams in panel HTML")
    render_parser.add_argument("input", help="HTML file to read ('-' for stdin)")
    render_parser.add_argument("-c", "--config", help="Configuration file (.json, .toml, .yaml)")
    render_parser.add_argument("-o", "--out", help="Output file (default: stdout)")

    config_parser = subparsers.add_parser("config", help="Show the effective configuration")
    config_parser.add_argument("-c", "--config", help="Configuration file (.json, .toml, .yaml)")
    config_parser.add_argument("--rich", action="store_true", help="Show a formatted table when on a terminal")

    return parser


def _setup_logging(parsed_args: argparse.Namespace) -> None:
    log_level = logging.DEBUG if parsed_args.trace else getattr(logging, parsed_args.log_level)
    configure_logging(log_level, log_file=parsed_args.log_file, trace_mode=parsed_args.trace)


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _write_output(text: str, out: Optional[str]) -> None:
    if out:
        Path(out).write_text(text, encoding="utf-8")
        logger.info("Wrote %s", out)
    else:
        sys.stdout.write(text)
        if not text.endswith("\n"):
            sys.stdout.write("\n")


def _load_cli_config(path: Optional[str]) -> PanelConfig:
    if path is not None and not Path(path).is_file():
        raise ConfigError(f"Config file not found: {path}")
    return load_config(path)


def cmd_serialize(parsed_args: argparse.Namespace) -> int:
    document = BeautifulSoup(_read_input(parsed_args.input), "html.parser")
    if parsed_args.selector:
        target: Any = document.select_one(parsed_args.selector)
        if target is None:
            print(f"Error: no element matches selector {parsed_args.selector!r}", file=sys.stderr)
            return EXIT_ERROR
    else:
        target = document.body or document_root(document) or document
    _write_output(serialize(target), parsed_args.out)
    return EXIT_SUCCESS


async def _render_document(document: BeautifulSoup, config: PanelConfig) -> None:
    mount = PanelMount(document, MutationHub(), config)
    try:
        mount.start()
        if not mount.scheduler.is_bound:
            root = document.body or document_root(document)
            logger.info("No panel root found; scanning the whole document")
            mount.scheduler.bind(root)
        await mount.scheduler.wait_idle()
    finally:
        await mount.aclose()


def cmd_render(parsed_args: argparse.Namespace) -> int:
    config = _load_cli_config(parsed_args.config)
    document = BeautifulSoup(_read_input(parsed_args.input), "html.parser")
    asyncio.run(_render_document(document, config))
    _write_output(str(document), parsed_args.out)
    return EXIT_SUCCESS


def _should_use_rich(parsed_args: argparse.Namespace) -> bool:
    return bool(parsed_args.rich) and sys.stdout.isatty()


def _print_config_rich(config: PanelConfig) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(title="panelmark configuration")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="yellow")

    for key, value in config.to_dict().items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", str(sub_value))
        else:
            table.add_row(key, str(value))
    console.print(table)


def cmd_config(parsed_args: argparse.Namespace) -> int:
    config = _load_cli_config(parsed_args.config)
    if _should_use_rich(parsed_args):
        _print_config_rich(config)
    else:
        print(json.dumps(config.to_dict(), indent=2))
    return EXIT_SUCCESS


_COMMANDS = {
    "serialize": cmd_serialize,
    "render": cmd_render,
    "config": cmd_config,
}


def main(args: list[str] | None = None) -> int:
    """Execute the panelmark command line."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.command is None:
        parser.print_help(sys.stderr)
        return EXIT_ERROR

    _setup_logging(parsed_args)

    try:
        return _COMMANDS[parsed_args.command](parsed_args)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
