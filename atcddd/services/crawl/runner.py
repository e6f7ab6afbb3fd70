from __future__ import annotations

import argparse
import dataclasses
import logging
import os
from typing import Optional

from atcddd.config import DEFAULT_ROOTS, get_settings
from atcddd.errors import ValidationError

from .cache import FileCache, MemoryCache
from .engine import crawl
from .http import RateLimitedFetcher
from .pipeline import write_csv, write_manifest

logger = logging.getLogger(__name__)


def _configure_logging(*, quiet: bool, verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def run_crawl(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.min_delay is not None:
        settings = dataclasses.replace(settings, min_delay=args.min_delay)
    cache = MemoryCache() if args.no_cache else FileCache(settings.cache_dir)
    roots = args.roots or list(DEFAULT_ROOTS)

    with RateLimitedFetcher(
        cache=cache,
        min_delay=settings.min_delay,
        timeout=settings.timeout,
        max_attempts=settings.max_attempts,
        user_agent=settings.user_agent,
    ) as fetcher:
        result = crawl(
            roots,
            fetcher=fetcher,
            settings=settings,
            max_codes=args.max_codes,
            progress=args.progress,
            quiet=args.quiet,
        )

    paths = write_csv(result, out_dir=args.out_dir, stamp=not args.no_stamp)
    if args.manifest:
        paths.append(write_manifest(paths))
    for p in paths:
        print(p)
    if result.failures:
        logger.warning("%d codes failed: %s", len(result.failures), ", ".join(sorted(result.failures)))
    return 0


def run_cache_clear(args: argparse.Namespace) -> int:
    cache = FileCache(args.cache_dir or get_settings().cache_dir)
    removed = cache.clear()
    print(f"Removed {removed} cached responses from {cache.directory}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    common.add_argument("--verbose", action="store_true", help="Log debug output (cache hits, requests)")

    parser = argparse.ArgumentParser(prog="atcddd", description="Crawl the WHO ATC/DDD index into CSV tables")
    sub = parser.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("crawl", parents=[common], help="Crawl from root codes and write codes/DDD CSV files")
    c.add_argument("roots", nargs="*", help="Root ATC codes (default: the 14 main groups)")
    c.add_argument("--min-delay", type=float, default=None, help="Minimum seconds between HTTP requests")
    c.add_argument("--max-codes", type=int, default=None, help="Stop after processing this many codes")
    c.add_argument("--out-dir", default=os.path.join(os.getcwd(), "data"), help="Output directory for CSV files")
    c.add_argument("--no-stamp", action="store_true", help="Omit the date stamp from file names")
    c.add_argument("--manifest", action="store_true", help="Also write a MANIFEST.csv with SHA-256 checksums")
    c.add_argument("--no-cache", action="store_true", help="Do not read or write the on-disk response cache")
    c.add_argument("--progress", action="store_true", help="Log periodic progress lines")

    cc = sub.add_parser("cache-clear", parents=[common], help="Delete all cached responses")
    cc.add_argument("--cache-dir", default=None, help="Cache directory (default: ATCDDD_CACHE_DIR)")
    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(quiet=args.quiet, verbose=args.verbose)

    try:
        if args.cmd == "crawl":
            return run_crawl(args)
        if args.cmd == "cache-clear":
            return run_cache_clear(args)
    except ValidationError as exc:
        logger.error("%s", exc)
        return 2

    parser.error("unknown command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
