"""CLI entry point for statesync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import load_config
from .exceptions import StateSyncError


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

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
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

    # Configure handler with appropriate formatter
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


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP server."""
    import uvicorn

    from .server import create_app

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    print("Starting statesync server")
    print(f"Environment: {config.server.environment}")
    print(f"State file: {config.storage.state_path}")
    print(f"URL: http://{config.server.host}:{config.server.port}")

    app = create_app(config)

    # State file must be readable before the server accepts requests
    try:
        await app.state.service.store.load()
    except StateSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    verbose = getattr(args, "verbose", False)
    uvicorn_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="info" if verbose else "warning",
    )
    server = uvicorn.Server(uvicorn_config)
    await server.serve()
    return 0


async def cmd_init(args: argparse.Namespace) -> int:
    """Create the data and public directories and the initial state file."""
    from .store import DocumentStore

    config = load_config(args.config)
    state_path = config.storage.state_path
    public_dir = Path(config.storage.public_dir).expanduser()

    public_dir.mkdir(parents=True, exist_ok=True)
    existed = state_path.exists()

    try:
        doc = await DocumentStore(state_path).load()
    except StateSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Data directory: {state_path.parent}")
    print(f"Public directory: {public_dir}")
    print(f"index.html exists: {(public_dir / 'index.html').exists()}")
    if existed:
        print(f"State file exists: {state_path} (sig {doc.sig})")
    else:
        print(f"Created state file: {state_path} (sig {doc.sig})")
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Report the health and current state of a running server."""
    from .sync import SyncClient

    config = load_config(args.config)
    client = SyncClient(
        config.client.base_url,
        timeout=config.client.timeout_seconds,
        max_retries=config.client.retry_max_attempts,
    )

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "base_url": config.client.base_url,
        "reachable": False,
    }

    try:
        health = await client.health()
        result = await client.fetch()
    except StateSyncError as e:
        status_data["error"] = str(e)
    else:
        status_data["reachable"] = True
        status_data["health"] = health
        status_data["state"] = {
            "sig": result.sig,
            "clients": len(result.document.clients) if result.document else 0,
            "bookings": len(result.document.bookings) if result.document else 0,
        }

    if getattr(args, "json_status", False):
        print(json.dumps(status_data, indent=2))
        return 0 if status_data["reachable"] else 1

    print(f"Server: {config.client.base_url}")
    if not status_data["reachable"]:
        print(f"  Status: Unreachable ({status_data['error']})")
        return 1

    print(f"  Status: {health.get('status')}")
    print(f"  Environment: {health.get('environment')}")
    print(f"  Subscribers: {health.get('subscribers')}")
    print(f"  Signature: {status_data['state']['sig']}")
    print(f"  Clients: {status_data['state']['clients']}")
    print(f"  Bookings: {status_data['state']['bookings']}")
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Follow the event stream, or poll with --poll."""
    from .sync import SyncClient

    config = load_config(args.config)
    client = SyncClient(
        config.client.base_url,
        timeout=config.client.timeout_seconds,
        max_retries=config.client.retry_max_attempts,
    )

    def report(doc) -> None:
        print(
            f"[{datetime.now().strftime('%H:%M:%S')}] sig={doc.sig} "
            f"clients={len(doc.clients)} bookings={len(doc.bookings)}"
        )

    try:
        if args.poll:
            await client.poll_loop(report, config.client.poll_interval_seconds)
        else:
            async for doc in client.stream():
                report(doc)
    except StateSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nStopped watching")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="statesync",
        description="Shared client and booking state with live updates",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, built-in defaults)",
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

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: from config, 5000)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from config, 0.0.0.0)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Init command
    init_parser = subparsers.add_parser("init", help="Create data directory and state file")
    init_parser.set_defaults(func=cmd_init)

    # Status command
    status_parser = subparsers.add_parser("status", help="Check a running server")
    status_parser.add_argument(
        "--json",
        dest="json_status",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Print each new state version")
    watch_parser.add_argument(
        "--poll",
        action="store_true",
        help="Poll with the last signature instead of streaming",
    )
    watch_parser.set_defaults(func=cmd_watch)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
