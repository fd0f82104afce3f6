"""Depth-bounded crawl that feeds every discovered image through the pipeline."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from .config import CrawlConfig
from .dedup import UriSet
from .images import ImageDownloader
from .models import ElementKind, PageElement
from .pages import HttpPageFetcher, Page, PageFetcher, RenderedPageFetcher
from .pipeline import ImagePipeline, LocalTransformer
from .transforms import TransformService
from .utils import canonicalize_uri

logger = logging.getLogger("image_crawler")

ELEMENT_KINDS = (ElementKind.PAGE, ElementKind.IMAGE)


@dataclass
class CrawlStats:
    """Counters reported at the end of a crawl."""

    pages_fetched: int = 0
    pages_failed: int = 0
    images_found: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_page(self, fetched: bool) -> None:
        with self._lock:
            if fetched:
                self.pages_fetched += 1
            else:
                self.pages_failed += 1

    def record_image(self) -> None:
        with self._lock:
            self.images_found += 1


@dataclass
class CrawlSummary:
    """Result and timing of a complete crawl."""

    seed_uri: str
    transformed_images: int
    stats: CrawlStats
    total_seconds: float


class ImageCrawler:
    """Sequential depth-first crawler.

    ``crawl`` returns the number of transformed images produced for the
    subtree rooted at ``uri``. Exhausted depth, an already visited URI and a
    failed fetch all contribute zero.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        pipeline: ImagePipeline,
        max_depth: int,
        uris: Optional[UriSet] = None,
    ) -> None:
        self.fetcher = fetcher
        self.pipeline = pipeline
        self.max_depth = max_depth
        self.uris = uris if uris is not None else UriSet()
        self.stats = CrawlStats()

    def _enter(self, uri: str, depth: int) -> bool:
        if depth > self.max_depth:
            logger.debug("Depth %d exceeds %d, not visiting %s", depth, self.max_depth, uri)
            return False
        if not self.uris.try_claim(uri):
            logger.debug("Already visited %s", uri)
            return False
        return True

    def _fetch(self, uri: str, depth: int) -> Optional[Page]:
        page = self.fetcher.fetch_page(uri)
        self.stats.record_page(page is not None)
        if page is None:
            return None
        if canonicalize_uri(page.uri) != canonicalize_uri(uri) and not self.uris.try_claim(page.uri):
            logger.debug("%s redirected to already visited %s", uri, page.uri)
            return None
        logger.info("Crawling %s (depth %d)", uri, depth)
        return page

    def crawl(self, uri: str, depth: int = 1) -> int:
        if not self._enter(uri, depth):
            return 0
        return self.crawl_page(uri, depth)

    def crawl_page(self, uri: str, depth: int) -> int:
        page = self._fetch(uri, depth)
        if page is None:
            return 0
        return self.process_page(page, depth)

    def process_page(self, page: Page, depth: int) -> int:
        return sum(
            self.process_element(element, depth)
            for element in page.elements(ELEMENT_KINDS)
        )

    def process_element(self, element: PageElement, depth: int) -> int:
        if element.kind is ElementKind.PAGE:
            return self.crawl(element.target_uri, depth + 1)
        return self.process_image(element.target_uri)

    def process_image(self, uri: str) -> int:
        self.stats.record_image()
        return self.pipeline.process_image(uri)


class ThreadedImageCrawler(ImageCrawler):
    """Crawls pages on a bounded thread pool.

    Each task expands a single page: it processes the page's images and
    hands its sub-pages back to the coordinating thread as new tasks, so a
    worker never waits on another worker.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        pipeline: ImagePipeline,
        max_depth: int,
        uris: Optional[UriSet] = None,
        max_workers: int = 4,
    ) -> None:
        super().__init__(fetcher, pipeline, max_depth, uris)
        self.max_workers = max_workers

    def _visit(self, uri: str, depth: int) -> Tuple[int, List[Tuple[str, int]]]:
        children: List[Tuple[str, int]] = []
        if not self._enter(uri, depth):
            return 0, children
        page = self._fetch(uri, depth)
        if page is None:
            return 0, children
        count = 0
        for element in page.elements(ELEMENT_KINDS):
            if element.kind is ElementKind.PAGE:
                children.append((element.target_uri, depth + 1))
            else:
                count += self.process_image(element.target_uri)
        return count, children

    def crawl(self, uri: str, depth: int = 1) -> int:
        total = 0
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="crawl"
        ) as executor:
            pending: Set[Future] = {executor.submit(self._visit, uri, depth)}
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    count, children = future.result()
                    total += count
                    for child_uri, child_depth in children:
                        pending.add(executor.submit(self._visit, child_uri, child_depth))
        return total


def build_crawler(config: CrawlConfig) -> ImageCrawler:
    """Wire fetcher, downloader, transforms and pipeline from ``config``."""
    if config.render:
        fetcher: PageFetcher = RenderedPageFetcher(config.navigation_timeout)
    else:
        fetcher = HttpPageFetcher(timeout=config.request_timeout)

    downloader = ImageDownloader(config.cache_dir, timeout=config.request_timeout)
    if config.clear_cache:
        downloader.clear_cache()

    transformer = LocalTransformer(
        TransformService(),
        config.transforms,
        output_dir=config.transformed_dir,
    )
    pipeline = ImagePipeline(downloader, transformer)

    if config.crawler == "threaded":
        return ThreadedImageCrawler(
            fetcher, pipeline, config.max_depth, max_workers=config.max_workers
        )
    return ImageCrawler(fetcher, pipeline, config.max_depth)


def run_crawler(seed_uri: str, config: CrawlConfig) -> CrawlSummary:
    """Crawl from ``seed_uri`` and report how many transformed images were produced."""
    crawler = build_crawler(config)
    start = time.perf_counter()
    count = crawler.crawl(seed_uri, 1)
    elapsed = time.perf_counter() - start
    logger.info(
        "Crawl of %s finished in %.2fs: %d pages, %d failed, %d images, %d transformed",
        seed_uri,
        elapsed,
        crawler.stats.pages_fetched,
        crawler.stats.pages_failed,
        crawler.stats.images_found,
        count,
    )
    return CrawlSummary(
        seed_uri=seed_uri,
        transformed_images=count,
        stats=crawler.stats,
        total_seconds=elapsed,
    )
