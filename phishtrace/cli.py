#!/usr/bin/env python3
"""
phishtrace - CLI entry point

Reads an Output Record (JSON) from --input or stdin and writes the enriched
record as JSON to stdout:

    phishtrace enumerate   follow URL seeds through their redirects
    phishtrace populate    attribute sender addresses and chain hosts
    phishtrace run         both, in one run
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional

from . import __version__
from .cache import default_cache_path, parse_ttl
from .config import Settings, load_env_files, load_settings
from .errors import InvalidRecordError
from .models import OutputRecord
from .pipeline import enumerate_urls, investigate, populate

EXIT_OK = 0
EXIT_INVALID_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phishtrace",
        description="Follow phishing URLs through their redirects and attribute the hosts behind them",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "command",
        choices=["enumerate", "populate", "run"],
        help="enumerate: redirect chains only; populate: attribution only; run: both",
    )
    parser.add_argument(
        "--input", "-i", default=None, help="Output Record JSON file (default: read stdin)"
    )
    parser.add_argument(
        "--timeout", "-t", type=float, default=None, help="Per-request timeout in seconds (default: 10)"
    )
    parser.add_argument(
        "--max-redirects", type=int, default=None, help="Maximum requests per chain (default: 10)"
    )
    parser.add_argument(
        "--max-lookups",
        type=int,
        default=None,
        help="Maximum concurrent registry lookups (default: 8)",
    )
    parser.add_argument(
        "--max-fetches", type=int, default=None, help="Maximum concurrent URL fetches (default: 8)"
    )
    parser.add_argument(
        "--deadline", type=float, default=None, help="Overall run deadline in seconds (default: 120)"
    )
    parser.add_argument(
        "--bootstrap",
        default=None,
        help="RDAP bootstrap base URL, directory or file (default: IANA; env RDAP_BOOTSTRAP_HOST)",
    )
    parser.add_argument(
        "--cache",
        nargs="?",
        const="default",
        default=None,
        help="Cache bootstrap documents in sqlite (optionally provide path).",
    )
    parser.add_argument(
        "--cache-ttl", default="24h", help="Bootstrap cache TTL (e.g. 3600, 10m, 24h, 7d). Default: 24h"
    )
    parser.add_argument(
        "--no-cache", action="store_true", help="Disable cache even if --cache is set"
    )
    parser.add_argument(
        "--indent", type=int, default=2, help="JSON indent; 0 for a single line (default: 2)"
    )
    parser.add_argument("--verbose", "-v", action="count", default=0, help="More logging (-vv for debug)")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    cache_path: Optional[str] = None
    cache_ttl_seconds: Optional[int] = None
    if args.cache and not args.no_cache:
        cache_path = default_cache_path() if args.cache == "default" else args.cache
        cache_ttl_seconds = parse_ttl(args.cache_ttl)

    return load_settings(
        timeout=args.timeout,
        max_redirects=args.max_redirects,
        max_concurrent_lookups=args.max_lookups,
        max_concurrent_fetches=args.max_fetches,
        run_deadline=args.deadline,
        bootstrap_source=args.bootstrap,
        cache_path=cache_path,
        cache_ttl_seconds=cache_ttl_seconds,
    )


def read_record(path: Optional[str]) -> OutputRecord:
    """Parse an Output Record. Raises InvalidRecordError."""
    try:
        if path:
            with open(path, encoding="utf-8") as fh:
                raw = fh.read()
        else:
            raw = sys.stdin.read()
    except OSError as e:
        raise InvalidRecordError(f"cannot read input: {e}") from e

    try:
        data: Any = json.loads(raw)
    except ValueError as e:
        raise InvalidRecordError(f"input is not valid JSON: {e}") from e
    return OutputRecord.from_dict(data)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def _dispatch(command: str, record: OutputRecord, settings: Settings) -> OutputRecord:
    if command == "enumerate":
        return await enumerate_urls(record, settings)
    if command == "populate":
        return await populate(record, settings)
    return await investigate(record, settings)


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    load_env_files()

    try:
        settings = settings_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    try:
        record = read_record(args.input)
    except InvalidRecordError as e:
        print(f"phishtrace: invalid output record: {e}", file=sys.stderr)
        raise SystemExit(EXIT_INVALID_INPUT) from None

    output = asyncio.run(_dispatch(args.command, record, settings))

    indent = args.indent if args.indent and args.indent > 0 else None
    print(json.dumps(output.to_dict(), indent=indent, ensure_ascii=False))
    raise SystemExit(EXIT_OK)


if __name__ == "__main__":
    main()
