# start_app.py
"""Launch the bistro core API server."""

from __future__ import annotations

import argparse
import os
import sys

import uvicorn
from dotenv import load_dotenv

import config


def main(argv: list[str] | None = None) -> None:
    """Load settings, then serve ``create_app`` with uvicorn."""

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use an in-memory SQLite database instead of PostgreSQL",
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args(argv)

    load_dotenv()  # load environment variables from a .env file

    if args.sqlite:
        os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

    settings = config.get_settings()
    try:
        config.validate_settings(settings)
    except RuntimeError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        raise SystemExit(2)

    try:
        uvicorn.run(
            "bistro.app.main:create_app",
            factory=True,
            host=settings.server_host,
            port=settings.server_port,
            log_level=settings.log_level.lower(),
            reload=args.reload,
            # in-flight requests get this long to drain on SIGTERM
            timeout_graceful_shutdown=settings.shutdown_timeout,
        )
    except ModuleNotFoundError as exc:
        missing = exc.name or str(exc)
        print(
            f"Missing dependency: {missing}. Install it with 'pip install {missing}'",
            file=sys.stderr,
        )
        raise SystemExit(1)


if __name__ == "__main__":
    main()
