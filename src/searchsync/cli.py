"""CLI entry point for the SearchSync server."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def main() -> None:
    """Main CLI entry point for the SearchSync server."""
    parser = argparse.ArgumentParser(
        prog="searchsync",
        description="SearchSync — Unified search API with index synchronization",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Server bind address (overrides config)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Server port (overrides config)",
    )
    parser.add_argument(
        "--workers",
        "-w",
        type=int,
        default=None,
        help="Number of worker processes",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"SearchSync {_get_version()}",
    )

    args = parser.parse_args()

    from searchsync.config.settings import Settings
    from searchsync.observability.logging import setup_logging

    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
        settings = Settings.from_yaml(config_path)
    else:
        settings = Settings()

    # Apply CLI overrides
    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port
    if args.workers:
        settings.server.workers = args.workers
    if args.log_level:
        settings.observability.log_level = args.log_level

    setup_logging(settings.observability)

    # Worker processes build their own settings, so overrides travel as env vars.
    os.environ["SEARCHSYNC_OBSERVABILITY__LOG_LEVEL"] = settings.observability.log_level
    if args.config:
        os.environ["SEARCHSYNC_CONFIG_FILE"] = str(Path(args.config).resolve())

    import uvicorn

    uvicorn.run(
        "searchsync.api.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        workers=settings.server.workers if not args.reload else 1,
        reload=args.reload,
        log_level=settings.observability.log_level.lower(),
    )


def _get_version() -> str:
    """Get the package version."""
    try:
        from searchsync import __version__

        return __version__
    except ImportError:
        return "unknown"


if __name__ == "__main__":
    main()
