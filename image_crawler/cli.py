"""Command-line entry point for the image crawler."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence

from .config import CRAWLER_TYPES, DEFAULT_TRANSFORMS, CrawlConfig
from .crawler import run_crawler
from .images import detect_image_format
from .models import RawImage
from .transforms import TransformService, UnknownTransformError

logger = logging.getLogger("image_crawler.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("crawl", *argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _add_crawl_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Seed URL (http, https or file) to start crawling from")
    parser.add_argument(
        "--output",
        default="output",
        type=Path,
        help="Directory for the download cache and transformed images",
    )
    parser.add_argument(
        "--depth",
        type=int,
        default=2,
        help="Maximum crawl depth; the seed page is depth 1",
    )
    parser.add_argument(
        "--transform",
        dest="transforms",
        action="append",
        default=None,
        help="Transform to apply (grayscale, sepia, tint); repeat for several. Default: all",
    )
    parser.add_argument(
        "--crawler",
        choices=CRAWLER_TYPES,
        default="sequential",
        help="Traversal strategy",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Worker threads for the threaded crawler",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="HTTP timeout in seconds for pages and images",
    )
    parser.add_argument(
        "--render",
        action="store_true",
        help="Render pages with headless Chromium (Playwright) before parsing",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Delete previously downloaded images before crawling",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_transform_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", type=Path, help="Local image file to transform")
    parser.add_argument(
        "--transform",
        required=True,
        help="Transform to apply (grayscale, sepia, tint)",
    )
    parser.add_argument(
        "--output",
        default="output",
        type=Path,
        help="Directory where the transformed image is written",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crawl a site, download its images and write transformed copies.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    crawl_parser = subparsers.add_parser(
        "crawl", help="Crawl from a seed URL and transform every image found"
    )
    _add_crawl_arguments(crawl_parser)

    transform_parser = subparsers.add_parser(
        "transform", help="Apply a single transform to a local image"
    )
    _add_transform_arguments(transform_parser)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    commands = ("crawl", "transform")
    argv = list(_ensure_command_prefix(argv, commands))
    args = parser.parse_args(argv)
    args.parser = parser
    return args


def _run_crawl(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    try:
        config = CrawlConfig(
            output_root=Path(args.output).resolve(),
            max_depth=args.depth,
            transforms=tuple(args.transforms or DEFAULT_TRANSFORMS),
            crawler=args.crawler,
            max_workers=args.workers,
            request_timeout=args.timeout,
            render=args.render,
            clear_cache=args.clear_cache,
        )
        summary = run_crawler(args.url, config)
    except (UnknownTransformError, ValueError) as exc:
        args.parser.error(str(exc))

    print(summary.transformed_images)
    return 0


def _run_transform(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    service = TransformService()
    try:
        transform_name = service.require(args.transform)
    except UnknownTransformError as exc:
        args.parser.error(str(exc))

    try:
        data = args.path.read_bytes()
    except OSError as exc:
        logger.error("Cannot read %s: %s", args.path, exc)
        return 1

    image = RawImage(
        source_uri=args.path.resolve().as_uri(),
        data=data,
        extension=detect_image_format(data) or args.path.suffix.lstrip(".") or "png",
    )
    start = time.perf_counter()
    result = service.apply_transform(image.name, transform_name, image.data)
    if not result.succeeded:
        logger.error("%s produced no output for %s", transform_name, args.path)
        return 1

    destination = Path(args.output) / transform_name / result.image_name
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(result.data)
    logger.info(
        "Saved %s in %.2fs",
        destination,
        time.perf_counter() - start,
    )
    print(destination)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.command == "crawl":
        return _run_crawl(args)
    return _run_transform(args)


if __name__ == "__main__":
    sys.exit(main())
