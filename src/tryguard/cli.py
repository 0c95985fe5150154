"""
Command line entry point for tryguard.
"""

from __future__ import annotations

import argparse
import json
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from loguru import logger

from tryguard import GuardDefinitionError, expand_source
from tryguard.logging import configure_logging

_VERBOSITY_LEVELS = {1: "INFO", 2: "DEBUG"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tryguard",
        description="tryguard CLI.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the installed tryguard version and exit.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Emit logs on stderr (-v for INFO, -vv for DEBUG).",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"],
        help="Explicit log level. Overrides -v.",
    )
    subparsers = parser.add_subparsers(dest="command")
    expand = subparsers.add_parser(
        "expand",
        help="Print a module with its @guarded functions expanded.",
    )
    expand.add_argument(
        "path",
        help="Python source file to expand.",
    )
    expand.add_argument(
        "--json",
        action="store_true",
        help="Print the expansion report as JSON instead of the expanded source.",
    )
    return parser


def _log_level(args: argparse.Namespace) -> str | None:
    if args.log_level:
        return args.log_level
    if args.verbose:
        return _VERBOSITY_LEVELS[min(args.verbose, 2)]
    return None


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(_log_level(args))

    if args.version:
        try:
            print(version("tryguard"))
        except PackageNotFoundError:
            print("tryguard (not installed)")
        return 0

    if args.command == "expand":
        path = Path(args.path)
        logger.info(f"Expanding {path}")
        try:
            source = path.read_text(encoding="utf-8")
        except OSError as exc:
            parser.error(f"Failed to read {path}: {exc}")

        try:
            report = expand_source(source, filename=str(path))
        except SyntaxError as exc:
            parser.error(f"Failed to parse {path}: {exc}")
        except GuardDefinitionError as exc:
            parser.error(str(exc))

        logger.info(f"Expanded {len(report.functions)} guarded function(s) in {path}")
        if args.json:
            print(json.dumps(report.model_dump(mode="json"), ensure_ascii=False, indent=2))
        else:
            print(report.source)
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
