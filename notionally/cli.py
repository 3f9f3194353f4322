"""Command line entry points: serve, process, resolve, check."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import Sequence

import httpx
from pydantic import ValidationError as SchemaError

from . import __version__
from .app import NotionallyApp
from .config import AppConfig, ConfigError, load_config
from .errors import NotionallyError
from .logging_utils import configure_logging
from .models import RawPost
from .services.url_resolver import URLResolver


def _load(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config, args.env_file)
    configure_logging(config)
    return config


def cmd_serve(args: argparse.Namespace) -> int:
    from .server import run_server

    config = _load(args)
    if args.port:
        config = config.model_copy(update={"server": config.server.model_copy(update={"port": args.port})})
    run_server(NotionallyApp(config))
    return 0


async def _process(config: AppConfig, post: RawPost) -> int:
    app = NotionallyApp(config)
    try:
        result = await app.process_post(post, request_id=f"cli-{uuid.uuid4().hex[:8]}")
    except NotionallyError as exc:
        print(json.dumps(exc.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1
    finally:
        await app.stop()
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def cmd_process(args: argparse.Namespace) -> int:
    config = _load(args)
    try:
        post = RawPost.model_validate_json(Path(args.payload).read_text(encoding="utf-8"))
    except SchemaError as exc:
        print(f"Invalid payload: {exc}", file=sys.stderr)
        return 2
    return asyncio.run(_process(config, post))


async def _resolve(config: AppConfig, urls: Sequence[str]) -> int:
    async with httpx.AsyncClient() as client:
        results = await URLResolver(client, config.resolver).resolve_all(urls)
    for entry in results:
        print(json.dumps(entry.to_dict()))
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    return asyncio.run(_resolve(_load(args), args.urls))


def cmd_check(args: argparse.Namespace) -> int:
    config = _load(args)
    for key, value in config.describe().items():
        print(f"{key:>20}: {value}")
    if not config.has_notion_credentials:
        print("Notion credentials are missing; posts cannot be saved.", file=sys.stderr)
        return 1
    if not config.has_dropbox_credentials:
        print("Dropbox is not configured; media will be linked, not archived.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="notionally", description="Save LinkedIn posts to Notion")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--env-file", type=Path, help="Path to a .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the local HTTP server")
    serve.add_argument("--port", type=int)
    serve.set_defaults(handler=cmd_serve)

    process = sub.add_parser("process", help="Process one saved payload without the server")
    process.add_argument("payload", help="JSON file containing a post payload")
    process.set_defaults(handler=cmd_process)

    resolve = sub.add_parser("resolve", help="Expand shortened URLs")
    resolve.add_argument("urls", nargs="+")
    resolve.set_defaults(handler=cmd_resolve)

    check = sub.add_parser("check", help="Show configuration status with secrets masked")
    check.set_defaults(handler=cmd_check)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
