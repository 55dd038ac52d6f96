"""Command-line front end: parse KQL statements and print their AST as JSON."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import TextIO

from kql.errors import ParseError
from kql.parsing.query_parser import QueryParser


def split_statements(content: str) -> list[str]:
    """Split content into statements on semicolons.

    Semicolons inside quoted strings or after a `--` comment marker do not
    end a statement.
    """
    statements = []
    current = []
    quote: str | None = None
    in_comment = False
    escape_next = False
    i = 0

    while i < len(content):
        ch = content[i]

        if in_comment:
            current.append(ch)
            if ch == "\n":
                in_comment = False
            i += 1
            continue

        if escape_next:
            current.append(ch)
            escape_next = False
            i += 1
            continue

        if quote is not None:
            current.append(ch)
            if ch == "\\":
                escape_next = True
            elif ch == quote:
                quote = None
            i += 1
            continue

        if ch in "\"'":
            quote = ch
            current.append(ch)
        elif ch == "-" and content.startswith("--", i):
            in_comment = True
            current.append(ch)
        elif ch == ";":
            stmt = "".join(current).strip()
            if stmt:
                statements.append(stmt)
            current = []
        else:
            current.append(ch)
        i += 1

    stmt = "".join(current).strip()
    if stmt:
        statements.append(stmt)

    return statements


def _is_comment_only(stmt: str) -> bool:
    return all(not line.strip() or line.strip().startswith("--") for line in stmt.splitlines())


def run_statements(content: str, out: TextIO, verbose: bool = False) -> int:
    """Parse every statement in content, writing one JSON document each."""
    parser = QueryParser()
    for stmt in split_statements(content):
        if _is_comment_only(stmt):
            continue
        if verbose:
            print(f"-- {stmt}", file=out)
        try:
            statement = parser.parse(stmt)
        except ParseError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(json.dumps(statement.to_dict(), indent=2), file=out)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    arg_parser = argparse.ArgumentParser(
        description="Parse KQL statements and print their syntax trees"
    )
    arg_parser.add_argument(
        "-c", "--command",
        type=str,
        help="Parse a single statement and exit",
    )
    arg_parser.add_argument(
        "-f", "--file",
        type=Path,
        help="Parse statements from a file (separated by ';')",
    )
    arg_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Echo each statement before its syntax tree",
    )
    arg_parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    args = arg_parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command:
        return run_statements(args.command, sys.stdout, args.verbose)

    if args.file:
        if not args.file.exists():
            print(f"Error: File not found: {args.file}", file=sys.stderr)
            return 1
        return run_statements(args.file.read_text(), sys.stdout, args.verbose)

    return run_statements(sys.stdin.read(), sys.stdout, args.verbose)


if __name__ == "__main__":
    sys.exit(main())
