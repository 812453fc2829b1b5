"""Command-line entrypoint for running the artifact mirror."""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

import structlog
import uvicorn
from pydantic import ValidationError

from ..common.settings import MirrorSettings
from .app import create_app


LOGGER = structlog.get_logger("depot.mirror.main")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pull-through cache for build artifacts")
    parser.add_argument("--host", help="Interface to bind (overrides DEPOT_HOST)")
    parser.add_argument("--port", type=int, help="Port to listen on (overrides DEPOT_PORT)")
    parser.add_argument("--cache-dir", help="Cache root directory (overrides DEPOT_CACHE_DIR)")
    parser.add_argument(
        "--upstream",
        action="append",
        dest="upstreams",
        help="Upstream base URL; repeat in priority order (overrides DEPOT_UPSTREAMS)",
    )
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> MirrorSettings:
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.cache_dir is not None:
        overrides["cache_dir"] = args.cache_dir
    if args.upstreams:
        overrides["upstreams"] = args.upstreams
    return MirrorSettings(**overrides)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    try:
        settings = load_settings(args)
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    app = create_app(settings)
    LOGGER.info(
        "mirror_listening",
        url=f"http://{settings.host}:{settings.port}",
        upstreams=settings.upstreams,
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
