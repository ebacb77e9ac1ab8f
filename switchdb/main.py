"""
SwitchDB command line entry point.

Commands:
- save: Record a switch event
- latest: Print the latest switch of an id
- history: Print the accepted switches of an id

Usage:
    switchdb save 123 on
    switchdb save 123 off --at 2024-05-01T12:00:00Z
    switchdb latest 123
    switchdb history 123 --limit 10 --newest-first

Configuration is entirely via environment variables (see config.py); use
SWITCHDB_BACKEND=sqlite or dynamodb for state that outlives the process.

Invariants:
    - Output on stdout is JSON (one document per line)
    - Exit code 1 for a missing switch, 2 for configuration errors,
      3 for backend or store failures and invalid input
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import json_log_formatter

from .config import StoreConfig
from .errors import SwitchNotFoundError, ToggleError
from .kv import KvError, create_backend
from .toggle import Switch, ToggleStore

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 1
EXIT_CONFIG = 2
EXIT_FAILURE = 3


def setup_logging(config: StoreConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Store configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Logs go to stderr, stdout carries command output
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def parse_state(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("on", "true", "1"):
        return True
    if lowered in ("off", "false", "0"):
        return False
    raise argparse.ArgumentTypeError(f"invalid state '{value}' (use on/off)")


def parse_limit(value: str) -> int:
    try:
        limit = int(value)
    except ValueError:
        limit = 0
    if limit < 1:
        raise argparse.ArgumentTypeError(f"invalid limit '{value}' (must be a positive integer)")
    return limit


def parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid ISO 8601 timestamp '{value}'")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ToggleCLI:
    """Runs CLI commands against a ToggleStore.

    Example:
        >>> cli = ToggleCLI(store)
        >>> await cli.save("123", True)
        {'outcome': 'created', 'id': '123', 'state': True, 'created_at': '...'}
    """

    def __init__(self, store: ToggleStore) -> None:
        self.store = store

    async def save(
        self,
        switch_id: str,
        state: bool,
        at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        switch = Switch(switch_id, state, at or datetime.now(timezone.utc))
        outcome = await self.store.save(switch)
        return {"outcome": outcome.value, **switch.to_dict()}

    async def latest(self, switch_id: str) -> Dict[str, Any]:
        return (await self.store.latest(switch_id)).to_dict()

    async def history(
        self,
        switch_id: str,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[Dict[str, Any]]:
        switches = await self.store.history(switch_id, limit=limit, newest_first=newest_first)
        return [s.to_dict() for s in switches]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SwitchDB toggle state tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # save command
    save_parser = subparsers.add_parser("save", help="Record a switch event")
    save_parser.add_argument("id", help="Switch identity")
    save_parser.add_argument("state", type=parse_state, help="on or off")
    save_parser.add_argument(
        "--at", type=parse_timestamp, help="Event time, ISO 8601 (default: now)"
    )

    # latest command
    latest_parser = subparsers.add_parser("latest", help="Show the latest switch")
    latest_parser.add_argument("id", help="Switch identity")

    # history command
    history_parser = subparsers.add_parser("history", help="List accepted switches")
    history_parser.add_argument("id", help="Switch identity")
    history_parser.add_argument("--limit", type=parse_limit, help="Maximum entries")
    history_parser.add_argument(
        "--newest-first", action="store_true", help="Newest entries first"
    )

    return parser


async def run(args: argparse.Namespace, config: StoreConfig) -> int:
    """Execute one parsed command and return the exit code."""
    backend = create_backend(config)
    await backend.connect()
    try:
        cli = ToggleCLI(ToggleStore.from_config(config, backend))

        if args.command == "save":
            print(json.dumps(await cli.save(args.id, args.state, args.at)))

        elif args.command == "latest":
            try:
                print(json.dumps(await cli.latest(args.id)))
            except SwitchNotFoundError as e:
                print(e.message, file=sys.stderr)
                return EXIT_NOT_FOUND

        elif args.command == "history":
            for entry in await cli.history(args.id, args.limit, args.newest_first):
                print(json.dumps(entry))

        return 0
    finally:
        await backend.close()


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = StoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG)

    setup_logging(config)
    config.log_config()

    try:
        code = asyncio.run(run(args, config))
    except (KvError, ToggleError) as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(EXIT_FAILURE)
    except ValueError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    sys.exit(code)


if __name__ == "__main__":
    main()
