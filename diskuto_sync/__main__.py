"""CLI entry point for diskuto-sync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, ConfigError, load_config
from .loggers import ConsoleLogger
from .sync import Scheduler
from .transport import DiskutoClient, ItemSource
from .types import ServerInfo


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )

    # Request lines from httpx would drown out the sync events
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def build_clients(config: Config) -> dict[ServerInfo, DiskutoClient]:
    """Create one HTTP client per configured server, in config order."""
    return {
        server: DiskutoClient(
            server.url,
            timeout=config.engine.timeout_seconds,
            max_retries=config.engine.retry_max_attempts,
        )
        for server in config.server_infos()
    }


async def close_clients(clients: dict[ServerInfo, ItemSource]) -> None:
    await asyncio.gather(*(client.close() for client in clients.values()))


async def cmd_sync(args: argparse.Namespace) -> int:
    """Sync every configured user across all servers."""
    config = load_config(args.config)
    clients = build_clients(config)

    print(f"Syncing {len(config.users)} users across {len(clients)} servers")
    try:
        scheduler = Scheduler(
            clients,
            ConsoleLogger(color=not args.no_color),
            parallel=config.engine.parallel,
            copy_files=config.engine.copy_files,
        )
        report = await scheduler.run(config.tasks())
    finally:
        await close_clients(clients)

    print(f"Users synced: {len(report.users)}")
    print(f"Items copied: {report.items_copied}")
    if report.copy_errors:
        print(f"Copy errors: {report.copy_errors}")
    if report.failed_users:
        print("Failed users:")
        for user in report.failed_users:
            print(f"  - {user.label} ({user.id})")

    return 0 if report.ok else 1


async def cmd_status(args: argparse.Namespace) -> int:
    """Check that every configured server is reachable."""
    config = load_config(args.config)
    clients = build_clients(config)

    try:
        reachable = await asyncio.gather(
            *(client.check_connection() for client in clients.values())
        )
    finally:
        await close_clients(clients)

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "servers": [
            {
                "name": server.name,
                "url": server.url,
                "dest": server.is_dest,
                "reachable": ok,
            }
            for server, ok in zip(clients, reachable)
        ],
        "users": [
            {
                "name": name,
                "id": user.id,
                "mode": user.sync.mode,
                "count": user.sync.count if user.sync.mode == "latest" else None,
                "follows": user.sync.follows,
            }
            for name, user in config.users.items()
        ],
        "engine": {
            "parallel": config.engine.parallel,
            "copy_files": config.engine.copy_files,
        },
    }

    if args.json_output:
        print(json.dumps(status_data, indent=2))
    else:
        print("diskuto-sync Status Check")
        print("=========================")
        print()
        print("Servers:")
        for server in status_data["servers"]:
            role = "destination" if server["dest"] else "source only"
            state = "Reachable" if server["reachable"] else "Not reachable"
            print(f"  - {server['name']} ({server['url']}, {role}): {state}")
        print()
        print("Users:")
        for user in status_data["users"]:
            mode = f"latest {user['count']}" if user["mode"] == "latest" else "full"
            follows = ", with follows" if user["follows"] else ""
            print(f"  - {user['name']} ({user['id']}): {mode}{follows}")
        print()
        print(f"Parallel users: {status_data['engine']['parallel']}")
        print(f"Copy attachments: {'Yes' if status_data['engine']['copy_files'] else 'No'}")

    return 0 if all(reachable) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="diskuto-sync",
        description="Copy Diskuto items between servers so every destination has them all",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: diskuto-sync.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    sync_parser = subparsers.add_parser("sync", help="Sync all configured users")
    sync_parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI colors in event output",
    )
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Check server connectivity")
    status_parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
