import io
from typing import Dict, Iterable, List, Optional
from unittest.mock import MagicMock

import pytest
from PIL import Image

from image_crawler.models import ElementKind, PageElement, RawImage


def make_image_bytes(fmt: str = "PNG", size=(16, 16)) -> bytes:
    width, height = size
    pixels = bytes((i * 37) % 256 for i in range(width * height * 3))
    buffer = io.BytesIO()
    Image.frombytes("RGB", size, pixels).save(buffer, format=fmt)
    return buffer.getvalue()


def page(*elements: PageElement):
    """A page double whose elements can only be iterated once per call."""
    fake = MagicMock()
    fake.elements.side_effect = lambda kinds: iter(
        [e for e in elements if e.kind in set(kinds)]
    )
    return fake


def link(uri: str) -> PageElement:
    return PageElement(uri, ElementKind.PAGE)


def img(uri: str) -> PageElement:
    return PageElement(uri, ElementKind.IMAGE)


class SiteFetcher:
    """Serves pages from a dict; URIs missing from it fail to fetch."""

    def __init__(
        self,
        site: Dict[str, Iterable[PageElement]],
        redirects: Optional[Dict[str, str]] = None,
    ) -> None:
        self.site = {uri: list(elements) for uri, elements in site.items()}
        self.redirects = redirects or {}
        self.fetched: List[str] = []

    def fetch_page(self, uri: str):
        self.fetched.append(uri)
        final = self.redirects.get(uri, uri)
        if final not in self.site:
            return None
        fetched = page(*self.site[final])
        fetched.uri = final
        return fetched


class CountingPipeline:
    """Returns a fixed number of transformed images per image URI."""

    def __init__(self, per_image: Optional[Dict[str, int]] = None, default: int = 3) -> None:
        self.per_image = per_image or {}
        self.default = default
        self.processed: List[str] = []

    def process_image(self, uri: str) -> int:
        self.processed.append(uri)
        return self.per_image.get(uri, self.default)


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG", size=(16, 16))


@pytest.fixture
def raw_image(png_bytes) -> RawImage:
    return RawImage(source_uri="http://example.com/img/cat.png", data=png_bytes)
