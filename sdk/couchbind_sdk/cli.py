"""
Command-line tool for couchbind.

Commands:
- dbs: List databases
- get-db: Show database information
- create-db / delete-db: Database administration
- changes: Follow a database's change feed, one JSON line per event

Usage:
    couchbind dbs
    couchbind create-db tasks
    couchbind changes tasks --include-docs --since now

Connection settings come from COUCHBIND_* environment variables.

Invariants:
    - Errors from the server cause a non-zero exit code
    - Output on stdout is machine-readable JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import httpx

from .client import CouchClient
from .config import Settings
from .errors import CouchBindError
from .logs import setup_logging
from .models import ChangeEvent, ChangesRequest

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="couchbind", description="CouchDB client tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("dbs", help="List databases")

    get_parser = subparsers.add_parser("get-db", help="Show database information")
    get_parser.add_argument("name")

    create_parser = subparsers.add_parser("create-db", help="Create a database")
    create_parser.add_argument("name")
    create_parser.add_argument("--shards", "-q", type=int, help="Number of shards")
    create_parser.add_argument("--replicas", "-n", type=int, help="Number of replicas")

    delete_parser = subparsers.add_parser("delete-db", help="Delete a database")
    delete_parser.add_argument("name")

    changes_parser = subparsers.add_parser("changes", help="Follow a change feed")
    changes_parser.add_argument("name")
    changes_parser.add_argument("--since", help="Sequence token to start after (or 'now')")
    changes_parser.add_argument("--include-docs", action="store_true", help="Include bodies")
    changes_parser.add_argument("--filter", help="Filter function (design/name)")

    return parser


def _print_event(event: ChangeEvent) -> None:
    print(json.dumps(event.model_dump(exclude={"entity"}), sort_keys=True), flush=True)


async def run(
    args: argparse.Namespace,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    async with CouchClient(settings, transport=transport) as couch:
        if args.command == "dbs":
            print(json.dumps(await couch.db.list_all()))
        elif args.command == "get-db":
            info = await couch.db.get(args.name)
            if info is None:
                print(f"Database '{args.name}' does not exist", file=sys.stderr)
                return 1
            print(info.model_dump_json(indent=2))
        elif args.command == "create-db":
            await couch.db.create(args.name, q=args.shards, n=args.replicas)
        elif args.command == "delete-db":
            await couch.db.delete(args.name)
        elif args.command == "changes":
            request = ChangesRequest(
                include_docs=args.include_docs or None,
                since=args.since,
                filter=args.filter,
            )
            async for event in couch.changes.events(args.name, request):
                _print_event(event)
    return 0


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(settings)
    settings.log_config()

    try:
        code = asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        code = 0
    except CouchBindError as e:
        logger.error(e.message, extra={"code": e.code})
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
