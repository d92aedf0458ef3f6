"""Command line entry point for one-off console commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from typing import Any

from .config import load_config
from .connections import ConnectionManagerError, MongoClientManager
from .server import get_server_info
from .shell import interpret_and_execute

LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mongoui", description="MongoDB console backend utilities.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List saved connections.")

    test = commands.add_parser("test", help="Test a saved connection.")
    test.add_argument("connection_id")

    shell = commands.add_parser("shell", help="Run a shell-style command.")
    shell.add_argument("connection_id")
    shell.add_argument("text", help='Command such as "db.users.find().limit(5)".')
    shell.add_argument("-d", "--database", default="admin")

    info = commands.add_parser("info", help="Show server build information.")
    info.add_argument("connection_id")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        result = asyncio.run(_run(args))
    except ConnectionManagerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    _print_json(result)
    if isinstance(result, dict) and result.get("success") is False:
        return 1
    return 0


async def _run(args: argparse.Namespace) -> Any:
    config = load_config()
    if args.command == "list":
        return [record.public_view() for record in config.connections]

    async with MongoClientManager(settings=config.pool) as manager:
        if args.command == "test":
            record = config.connection(args.connection_id)
            if record is None:
                raise ConnectionManagerError(f"Connection not found: {args.connection_id}")
            result = await manager.test_connection(record)
            return result.as_dict()
        if args.command == "info":
            return await get_server_info(manager, args.connection_id)
        LOG.debug("Running shell command", extra={"connection": args.connection_id})
        return await interpret_and_execute(manager, args.connection_id, args.database, args.text)


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2))


__all__ = ["build_parser", "main"]
