"""Entry point for `python -m warpos` and the `warpos` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Sequence

from warpos.errors import WarposError
from warpos.tools import ALL_TOOLS, call_tool


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run warpos task orchestration operations")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("tools", help="List the available operation names")
    call_parser = subparsers.add_parser("call", help="Invoke one operation and print its JSON result")
    call_parser.add_argument("name", help="Operation name, e.g. task_prepare")
    call_parser.add_argument("--args", default="{}", help="JSON object of keyword arguments")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "tools":
        for item in ALL_TOOLS:
            print(item.name)
        return 0

    try:
        arguments = json.loads(args.args)
    except json.JSONDecodeError as exc:
        logging.error("--args is not valid JSON: %s", exc)
        return 1
    if not isinstance(arguments, dict):
        logging.error("--args must be a JSON object")
        return 1

    try:
        print(call_tool(args.name, arguments))
    except (WarposError, ValueError, RuntimeError) as exc:
        logging.error("%s failed: %s", args.name, exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
