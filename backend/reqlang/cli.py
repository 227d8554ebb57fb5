"""
Command line entry point.

    reqlang requirements.req --env env.yaml --option pg --format markdown

Exit status is 0 when the requirements hold, 1 when they do not, and 2
when the program or one of its inputs is invalid.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import DEFAULT_CONFIG, load_config
from .engine import check
from .environment import load_environment
from .errors import ReqLangError
from .logging_utils import setup_logging, verbosity_level
from .report import Report

log = logging.getLogger(__name__)

FORMATS = ("summary", "json", "markdown")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reqlang",
        description="Evaluate a requirement program against an environment description",
    )
    parser.add_argument("program", nargs="?", help="Requirement program file, or '-' for stdin")
    parser.add_argument("-e", "--expression", help="Program text given inline instead of a file")
    parser.add_argument("--env", type=Path, required=True, help="Environment description (YAML)")
    parser.add_argument("-o", "--option", dest="options", action="append", default=[],
                        help="Select a choice alternative by tag (repeatable)")
    parser.add_argument("--config", type=Path, default=None, help="Evaluator settings (YAML)")
    parser.add_argument("--format", choices=FORMATS, default="summary", help="Report format")
    parser.add_argument("--actionable-only", action="store_true",
                        help="Leave out failures that installing something cannot fix")
    parser.add_argument("--hide-shadowed", action="store_true",
                        help="Leave out failures under an alternative that held")
    parser.add_argument("--list-modules", action="store_true",
                        help="List the modules the environment declares and exit")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for INFO, -vv for DEBUG")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write DEBUG logs to this file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _read_program(args: argparse.Namespace) -> str:
    if args.expression is not None:
        return args.expression
    if args.program == "-":
        return sys.stdin.read()
    return Path(args.program).read_text(encoding="utf-8")


def _render(report: Report, args: argparse.Namespace) -> str:
    selected = report.failures(
        actionable=True if args.actionable_only else None,
        include_shadowed=not args.hide_shadowed,
    )
    report = dataclasses.replace(report, entries=selected)

    if args.format == "json":
        return report.to_json()
    if args.format == "markdown":
        return report.to_markdown()

    lines = [report.summary()]
    for entry in report.entries:
        line = f"  - {entry.location}: {entry.detail}"
        if entry.shadowed:
            line += " (alternative held)"
        lines.append(line)
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.program is None and args.expression is None and not args.list_modules:
        parser.error("a program file or --expression is required")

    setup_logging(console_level=verbosity_level(args.verbose), file_path=args.log_file)

    try:
        env = load_environment(args.env)
        modules = env.registry.list_modules()
        log.info("Loaded %d module(s) from %s", len(modules), args.env)

        if args.list_modules:
            for record in sorted(modules, key=lambda r: r.name):
                print(record.name if record.version is None else f"{record.name} {record.version}")
            return 0

        config = load_config(args.config) if args.config else DEFAULT_CONFIG
        outcome = check(_read_program(args), args.options, env, config)
    except ReqLangError as e:
        log.debug("Aborted: %r", e)
        print(f"error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(_render(outcome.report, args))
    return 0 if outcome.result else 1


if __name__ == "__main__":
    sys.exit(main())
