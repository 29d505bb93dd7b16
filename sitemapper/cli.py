"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .batch import BatchProcessor
from .config import CrawlConfig, load_yaml
from .coordinator import CrawlCoordinator, progress_of
from .errors import SitemapperError
from .log import get_crawl_logger, setup_logging
from .models import CrawlProgress
from .service import SitemapService
from .store import JsonFileStateStore
from .urls import derive_site_slug, validate_url

logger = logging.LoggerAdapter(logging.getLogger("sitemapper.cli"), extra={"crawl": "ALL"})

DEFAULT_STATE_DIR = Path(".sitemapper")
DEFAULT_OUTPUT_DIR = Path("sitemaps")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=None,
        help=f"Directory holding resumable crawl state (default: {DEFAULT_STATE_DIR})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")


def _add_output_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--output", "-o", type=Path, default=None, help="Sitemap file to write")
    parser.add_argument("--no-pretty", action="store_true", help="Write the sitemap without indentation")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl a website and generate an XML sitemap.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    crawl = subparsers.add_parser("crawl", help="Start a crawl and write its sitemap")
    crawl.add_argument("urls", nargs="*", help="Seed URL(s); may also come from 'sites:' in the config")
    crawl.add_argument("--config", "-c", type=Path, default=None, help="Path to YAML configuration file")
    crawl.add_argument("--max-depth", type=int, default=None, help="Maximum link depth from the seed")
    crawl.add_argument("--max-pages", type=int, default=None, help="Stop after this many pages")
    crawl.add_argument("--images", action="store_true", help="Include <image:image> entries")
    crawl.add_argument("--no-robots", action="store_true", help="Ignore robots.txt")
    crawl.add_argument("--include-noindex", action="store_true", help="Keep pages marked noindex")
    crawl.add_argument("--rate", type=float, default=None, help="Seconds to wait between rounds")
    crawl.add_argument("--output-dir", type=Path, default=None, help="Directory for per-site sitemaps")
    _add_output_arguments(crawl)
    _add_common_arguments(crawl)

    resume = subparsers.add_parser("resume", help="Continue an interrupted crawl")
    resume.add_argument("crawl_id")
    _add_output_arguments(resume)
    _add_common_arguments(resume)

    status = subparsers.add_parser("status", help="Show crawl progress")
    status.add_argument("crawl_id")
    _add_common_arguments(status)

    cancel = subparsers.add_parser("cancel", help="Cancel a running crawl")
    cancel.add_argument("crawl_id")
    _add_common_arguments(cancel)

    sitemap = subparsers.add_parser("sitemap", help="Write the sitemap for a stored crawl")
    sitemap.add_argument("crawl_id")
    _add_output_arguments(sitemap)
    _add_common_arguments(sitemap)

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, settings: dict) -> CrawlConfig:
    config = CrawlConfig.from_mapping(settings)
    overrides = {}
    if args.max_depth is not None:
        overrides["max_depth"] = args.max_depth
    if args.max_pages is not None:
        overrides["max_pages"] = args.max_pages
    if args.images:
        overrides["include_images"] = True
    if args.no_robots:
        overrides["respect_robots_txt"] = False
    if args.include_noindex:
        overrides["exclude_noindex"] = False
    if args.rate is not None:
        overrides["crawl_rate"] = args.rate
    return dataclasses.replace(config, **overrides) if overrides else config


def _log_progress(crawl_id: str):
    crawl_logger = get_crawl_logger(crawl_id, "sitemapper.cli")

    def report(progress: CrawlProgress) -> None:
        crawl_logger.info(
            f"{progress.urls_scanned}/{progress.total_urls} scanned ({progress.percent_complete}%), "
            f"elapsed {progress.time_elapsed}, remaining {progress.estimated_time_remaining}"
        )

    return report


def _write_sitemap(service: SitemapService, crawl_id: str, output: Path, pretty: bool) -> None:
    xml, _ = service.generate_sitemap(options={"pretty": pretty}, crawl_id=crawl_id)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(xml, encoding="utf-8")
    logger.info(f"Saved sitemap to {output}")


async def _drive(service: SitemapService, crawl_id: str, output: Path, pretty: bool) -> None:
    async with service.coordinator.worker:
        state = await service.coordinator.run(crawl_id, on_progress=_log_progress(crawl_id))
    if state.is_cancelled:
        logger.warning(f"Crawl {crawl_id} was cancelled; writing what was collected")
    if state.processed:
        _write_sitemap(service, crawl_id, output, pretty)
    else:
        logger.error(f"Crawl {crawl_id} produced no pages, no sitemap written")


def _service(state_dir: Path) -> SitemapService:
    store = JsonFileStateStore(state_dir)
    return SitemapService(CrawlCoordinator(store, BatchProcessor()))


async def _run_crawl(args: argparse.Namespace) -> int:
    settings = load_yaml(args.config) if args.config else {}
    config = build_config(args, settings)
    sites = list(args.urls) or list(settings.get("sites", []) or ())
    if not sites:
        logger.error("No sites given on the command line or in config 'sites:'")
        return 2

    state_dir = args.state_dir or Path(settings.get("state_dir", DEFAULT_STATE_DIR))
    output_dir = args.output_dir or Path(settings.get("output_dir", DEFAULT_OUTPUT_DIR))
    service = _service(state_dir)

    logger.info(f"Starting sitemap crawl for {len(sites)} site(s)")
    failures = 0
    for site in sites:
        error = validate_url(site)
        if error:
            logger.error(f"Skipping {site!r}: {error}")
            failures += 1
            continue
        output = args.output if args.output and len(sites) == 1 else output_dir / f"{derive_site_slug(site)}.xml"
        state = service.coordinator.start(site, config)
        logger.info(f"Crawl id for {site}: {state.crawl_id} (resume with 'sitemapper resume {state.crawl_id}')")
        try:
            await _drive(service, state.crawl_id, output, not args.no_pretty)
        except SitemapperError as e:
            logger.error(f"Error crawling {site}: {e}")
            failures += 1
    logger.info("All done.")
    return 1 if failures else 0


async def _run_resume(args: argparse.Namespace) -> int:
    service = _service(args.state_dir or DEFAULT_STATE_DIR)
    state = service.coordinator.load(args.crawl_id)
    output = args.output or DEFAULT_OUTPUT_DIR / f"{derive_site_slug(state.root_url)}.xml"
    await _drive(service, args.crawl_id, output, not args.no_pretty)
    return 0


def _run_status(args: argparse.Namespace) -> int:
    service = _service(args.state_dir or DEFAULT_STATE_DIR)
    state = service.coordinator.load(args.crawl_id)
    payload = progress_of(state).to_dict()
    payload.update(isComplete=state.is_complete, isCancelled=state.is_cancelled)
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0


def _run_cancel(args: argparse.Namespace) -> int:
    service = _service(args.state_dir or DEFAULT_STATE_DIR)
    service.cancel(args.crawl_id)
    logger.info(f"Cancelled {args.crawl_id}")
    return 0


def _run_sitemap(args: argparse.Namespace) -> int:
    service = _service(args.state_dir or DEFAULT_STATE_DIR)
    state = service.coordinator.load(args.crawl_id)
    output = args.output or DEFAULT_OUTPUT_DIR / f"{derive_site_slug(state.root_url)}.xml"
    _write_sitemap(service, args.crawl_id, output, not args.no_pretty)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)
    try:
        if args.command == "crawl":
            code = asyncio.run(_run_crawl(args))
        elif args.command == "resume":
            code = asyncio.run(_run_resume(args))
        elif args.command == "status":
            code = _run_status(args)
        elif args.command == "cancel":
            code = _run_cancel(args)
        else:
            code = _run_sitemap(args)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user; in-flight URLs will be retried on resume")
        code = 130
    except SitemapperError as e:
        logger.error(str(e))
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
