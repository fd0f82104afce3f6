"""MCP server exposing image-crawler crawl/transform tools."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .config import CrawlConfig
from .crawler import run_crawler
from .models import RawImage
from .transforms import TransformService

logger = logging.getLogger("image_crawler.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="image-crawler")


@mcp.tool()
def crawl(
    url: str,
    max_depth: int = 2,
) -> str:
    """Crawl a site from ``url`` and report how many transformed images were produced."""

    with tempfile.TemporaryDirectory(prefix="image-crawler-") as tmp_dir:
        config = CrawlConfig(output_root=Path(tmp_dir), max_depth=max_depth)
        summary = run_crawler(url, config)
    return (
        f"Crawled {summary.stats.pages_fetched} page(s) from {url} "
        f"and produced {summary.transformed_images} transformed image(s) "
        f"from {summary.stats.images_found} image reference(s)."
    )


@mcp.tool()
def transform(
    path: str,
    transform: str,
) -> str:
    """Apply a named transform to a local image and return the output path."""

    source = Path(path).expanduser()
    if not source.is_file():
        raise FileNotFoundError(f"Image path does not exist: {source}")

    service = TransformService()
    image = RawImage(
        source_uri=source.resolve().as_uri(),
        data=source.read_bytes(),
        extension=source.suffix.lstrip(".") or "png",
    )
    result = service.apply_transform(image.name, transform, image.data)
    if not result.succeeded:
        raise RuntimeError(f"{result.transform_name} produced no output for {source}")

    destination = source.parent / f"{source.stem}-{result.transform_name}{source.suffix}"
    destination.write_bytes(result.data)
    return str(destination)


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
