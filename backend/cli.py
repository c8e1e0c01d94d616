#!/usr/bin/env python3
"""
Session auth service CLI.

    python cli.py serve      # run the API with uvicorn
    python cli.py init-db    # create tables
    python cli.py sweep      # deactivate expired refresh tokens once
"""

import argparse
import asyncio
import os
import sys
from typing import Optional

# Make the backend modules importable when run as a script
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))


class Colors:
    """ANSI colors for terminal"""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    BLUE = "\033[94m"


def info(msg):
    print(f"{Colors.BLUE}[INFO]{Colors.RESET} {msg}")


def success(msg):
    print(f"{Colors.GREEN}[OK]{Colors.RESET} {msg}")


def error(msg):
    print(f"{Colors.RED}[ERROR]{Colors.RESET} {msg}", file=sys.stderr)


async def run_sweep(settings) -> Optional[int]:
    from db.database import create_engine_from_settings, create_session_factory, init_db
    from services.clock import SystemClock
    from services.sweeper import RevocationSweeper

    engine = create_engine_from_settings(settings)
    try:
        await init_db(engine)
        sweeper = RevocationSweeper(create_session_factory(engine), SystemClock())
        return await sweeper.sweep_expired()
    finally:
        await engine.dispose()


async def run_init_db(settings) -> None:
    from db.database import create_engine_from_settings, init_db

    engine = create_engine_from_settings(settings)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()


def serve(settings, host: Optional[str], port: Optional[int], reload: bool) -> None:
    import uvicorn

    info(f"API: http://{host or settings.HOST}:{port or settings.PORT}")
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="session-auth", description="Session auth service"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on changes")

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("sweep", help="Deactivate expired refresh tokens once")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    from config import get_settings

    try:
        settings = get_settings()
    except ValueError as e:
        error(str(e))
        return 2

    if args.command == "serve":
        serve(settings, args.host, args.port, args.reload)
    elif args.command == "init-db":
        asyncio.run(run_init_db(settings))
        success("Database initialized")
    elif args.command == "sweep":
        count = asyncio.run(run_sweep(settings))
        success(f"Deactivated {count} expired refresh tokens")
    return 0


if __name__ == "__main__":
    sys.exit(main())
