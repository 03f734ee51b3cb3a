#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ------------------------------------------------------------------
# Multi-site manga archiver  →  one CBZ per chapter
# -----------------------------------------------------------
import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional
from urllib.parse import urlparse

from archiver.errors import DiscoveryError, FetchCancelled, ScratchDirectoryError
from archiver.fetcher import HostLimiter, ResilientFetcher, RetryPolicy, create_session
from archiver.images import DEFAULT_JPEG_QUALITY
from archiver.pipeline import ChapterPipeline, PipelineConfig
from sites import available_sites, get_handler_by_name, get_handler_for_url

log = logging.getLogger("manga_archiver")

_OWN_LOGGERS = ("archiver", "sites", "manga_archiver")


# -----------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------
def setup_logging(verbose: bool = False, debug: bool = False, log_file: str = "") -> None:
    """Progress at INFO by default; --verbose adds our DEBUG output, --debug everyone's."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.WARNING)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        root.addHandler(file_handler)

    own_level = logging.DEBUG if (verbose or debug) else logging.INFO
    for name in _OWN_LOGGERS:
        logging.getLogger(name).setLevel(own_level)


def install_signal_handlers(cancel_event: threading.Event) -> None:
    """First SIGINT/SIGTERM asks the run to wind down; a second SIGINT aborts."""

    def _request_stop(signum, frame):
        if not cancel_event.is_set():
            print("\nInterrupt received, finishing up (press Ctrl-C again to abort)...")
            cancel_event.set()
            signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)


def resolve_site_handler(site_name: str, url: Optional[str]):
    if site_name and site_name != "auto":
        handler = get_handler_by_name(site_name)
        if not handler:
            sys.exit(f"Unknown site handler: {site_name}")
        return handler

    handler = get_handler_for_url(url or "")
    if not handler:
        sys.exit(
            "Unable to auto-detect a site handler for the provided URL. "
            "Please use a site subcommand."
        )
    return handler


def series_from_url(url: str) -> str:
    parts = [
        p
        for p in urlparse(url).path.split("/")
        if p and p not in ("manga", "series", "all-chapters")
    ]
    if not parts:
        return ""
    return parts[-1].replace("-", " ").replace("_", " ").title()


# -----------------------------------------------------------
# main
# -----------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    target = common.add_mutually_exclusive_group()
    target.add_argument("--url", help="Title (series) page URL.")
    target.add_argument(
        "--shortname", help="Title slug as used in the site's URLs, e.g. 'ugly-complex'."
    )
    common.add_argument(
        "--start", type=int, default=0, help="First chapter number to download (0 = from the first)."
    )
    common.add_argument(
        "--end", type=int, default=0, help="Last chapter number to download (0 = up to the latest)."
    )
    common.add_argument(
        "-o", "--output", default=".", help="Directory the chapter archives are written to."
    )
    common.add_argument(
        "--quality",
        type=int,
        default=DEFAULT_JPEG_QUALITY,
        choices=range(1, 101),
        metavar="[1-100]",
        help=f"JPEG quality for converted images (default: {DEFAULT_JPEG_QUALITY}).",
    )
    common.add_argument(
        "--workers", type=int, default=1, help="Chapters downloaded concurrently (default: 1)."
    )
    common.add_argument(
        "--max-per-host", type=int, default=1, help="Concurrent requests allowed per host."
    )
    common.add_argument(
        "--delay", type=float, default=0.0, help="Pause in seconds between image requests."
    )
    common.add_argument("--image-retries", type=int, default=3)
    common.add_argument("--image-retry-delay", type=float, default=2.0)
    common.add_argument("--page-backoff", type=float, default=10.0)
    common.add_argument("--page-backoff-max", type=float, default=320.0)
    common.add_argument("--page-retries-at-max", type=int, default=3)
    common.add_argument("--timeout", type=float, default=30.0)
    common.add_argument(
        "--comic-info", action="store_true", help="Add a ComicInfo.xml entry to every archive."
    )
    common.add_argument("--cookies", default="", help='Extra cookies, "k1=v1; k2=v2".')
    common.add_argument("--log-file", default="", help="Also append log output to this file.")
    common.add_argument(
        "-v", "--verbose", action="store_true", help="Enable detailed, step-by-step logging."
    )
    common.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug logging, including HTTP libraries."
    )

    p = argparse.ArgumentParser(
        "manga-archiver",
        description="Download manga chapters as CBZ archives, skipping chapters already on disk.",
    )
    p.add_argument("--list-sites", action="store_true", help="List supported sites and exit.")
    sub = p.add_subparsers(dest="site", metavar="SITE")
    sub.add_parser("auto", parents=[common], help="Pick the site from --url.")
    for handler in available_sites():
        sub.add_parser(
            handler.name,
            parents=[common],
            help=f"Download chapters from {handler.display_name}.",
        )
    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_sites:
        for handler in available_sites():
            print(f"{handler.name:<12} {handler.base_url}")
        return 0
    if not args.site:
        parser.print_usage()
        return 2
    if not args.url and not args.shortname:
        parser.error("one of --url or --shortname is required")
    if args.workers < 1 or args.max_per_host < 1:
        parser.error("--workers and --max-per-host must be at least 1")

    setup_logging(args.verbose, args.debug, args.log_file)

    handler = resolve_site_handler(args.site, args.url)
    try:
        title_url = handler.title_url(args.url, args.shortname)
    except ValueError as e:
        sys.exit(f"Error: {e}")

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    session = create_session(args.cookies)
    handler.configure_session(session)
    try:
        fetcher = ResilientFetcher(
            session,
            image_policy=RetryPolicy.bounded(args.image_retries, args.image_retry_delay),
            page_policy=RetryPolicy.exponential(
                args.page_backoff, args.page_backoff_max, args.page_retries_at_max
            ),
            limiter=HostLimiter(args.max_per_host),
            cancel_event=cancel_event,
            timeout=args.timeout,
        )
    except ValueError as e:
        parser.error(str(e))

    config = PipelineConfig(
        dest_dir=args.output,
        quality=args.quality,
        workers=args.workers,
        image_delay=args.delay,
        comic_info=args.comic_info,
        series=series_from_url(title_url),
        start=args.start,
        end=args.end,
    )
    pipeline = ChapterPipeline(handler, fetcher, config, cancel_event)

    print(f"{handler.display_name}: {title_url}")
    try:
        summary = pipeline.run(title_url)
    except FetchCancelled:
        log.warning("Interrupted while listing chapters")
        return 130
    except DiscoveryError as e:
        log.error("Error retrieving chapter list from %s: %s", handler.name, e)
        return 1
    except (ScratchDirectoryError, OSError) as e:
        log.error("Aborting run: %s", e)
        return 1

    print()
    for line in summary.report():
        print(line)
    if cancel_event.is_set():
        return 130
    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
