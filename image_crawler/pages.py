"""Page fetching and classification of page references into sub-pages and images."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Optional, Protocol
from urllib.parse import urljoin, urlsplit
from urllib.request import url2pathname

import requests
from bs4 import BeautifulSoup, Tag

from .models import ElementKind, PageElement

logger = logging.getLogger("image_crawler")

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tif", ".tiff"}
SKIPPED_SCHEMES = ("data:", "javascript:", "mailto:", "tel:")
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
USER_AGENT = "image-crawler/0.1"


def _looks_like_image(uri: str) -> bool:
    suffix = PurePosixPath(urlsplit(uri).path).suffix.lower()
    return suffix in IMAGE_EXTENSIONS


class Page:
    """A fetched HTML page whose references are parsed on demand."""

    def __init__(self, uri: str, html: str) -> None:
        self.uri = uri
        self.html = html
        self._soup: Optional[BeautifulSoup] = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup

    def _resolve(self, reference: Optional[str]) -> Optional[str]:
        if not reference:
            return None
        reference = reference.strip()
        if not reference or reference.startswith("#"):
            return None
        if reference.lower().startswith(SKIPPED_SCHEMES):
            return None
        try:
            target = urljoin(self.uri, reference)
            urlsplit(target).port
        except ValueError as exc:
            logger.debug("Skipping malformed reference %r on %s: %s", reference, self.uri, exc)
            return None
        return target

    def elements(self, kinds: Iterable[ElementKind]) -> Iterator[PageElement]:
        """Yield page and image references in document order.

        Anchors pointing at image files count as images. Repeated references
        are yielded every time they occur. References that cannot be
        parsed as URIs are skipped.
        """
        wanted = frozenset(kinds)
        for tag in self.soup.descendants:
            if not isinstance(tag, Tag) or tag.name not in ("a", "img"):
                continue
            if tag.name == "img":
                target = self._resolve(tag.get("src"))
                kind = ElementKind.IMAGE
            else:
                target = self._resolve(tag.get("href"))
                kind = ElementKind.IMAGE if target and _looks_like_image(target) else ElementKind.PAGE
            if target is None or kind not in wanted:
                continue
            yield PageElement(target_uri=target, kind=kind)


class PageFetcher(Protocol):
    def fetch_page(self, uri: str) -> Optional[Page]: ...


class LocalPageFetcher:
    """Reads HTML pages from ``file://`` URIs."""

    def fetch_page(self, uri: str) -> Optional[Page]:
        path = Path(url2pathname(urlsplit(uri).path))
        if path.is_dir():
            path = path / "index.html"
            uri = path.as_uri()
        try:
            html = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Failed to read page %s: %s", uri, exc)
            return None
        return Page(uri, html)


class HttpPageFetcher:
    """Downloads pages with requests; local ``file://`` pages are read from disk."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout
        self._local = LocalPageFetcher()

    def fetch_page(self, uri: str) -> Optional[Page]:
        if urlsplit(uri).scheme == "file":
            return self._local.fetch_page(uri)
        try:
            resp = self.session.get(uri, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch page %s: %s", uri, exc)
            return None

        content_type = resp.headers.get("Content-Type", "")
        mime = content_type.split(";")[0].strip().lower()
        if mime and mime not in HTML_CONTENT_TYPES:
            logger.debug("Skipping %s: not HTML (Content-Type=%s)", uri, content_type)
            return None
        return Page(resp.url or uri, resp.text)


class RenderedPageFetcher:
    """Renders pages in headless Chromium so script-inserted images are seen."""

    def __init__(self, navigation_timeout: float = 30.0, wait_after_load: float = 1.0) -> None:
        self.navigation_timeout = navigation_timeout
        self.wait_after_load = wait_after_load
        self._local = LocalPageFetcher()

    def fetch_page(self, uri: str) -> Optional[Page]:
        from playwright.sync_api import Error as PlaywrightError
        from playwright.sync_api import sync_playwright

        if urlsplit(uri).scheme == "file":
            return self._local.fetch_page(uri)
        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(headless=True)
                try:
                    page = browser.new_page()
                    page.set_default_navigation_timeout(self.navigation_timeout * 1000)
                    logger.info("Rendering %s", uri)
                    page.goto(uri, wait_until="networkidle")
                    if self.wait_after_load:
                        page.wait_for_timeout(int(self.wait_after_load * 1000))
                    html = page.content()
                    final_url = page.url
                finally:
                    browser.close()
        except PlaywrightError as exc:
            logger.warning("Failed to render page %s: %s", uri, exc)
            return None
        return Page(final_url or uri, html)
