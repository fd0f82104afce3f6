"""Data models shared by the crawler, the image pipeline and the transforms."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

from .utils import cache_key, slugify


class ElementKind(Enum):
    """Classification of a reference found on a page."""

    PAGE = "page"
    IMAGE = "image"


@dataclass(frozen=True)
class PageElement:
    """A sub-page link or image reference discovered while parsing a page."""

    target_uri: str
    kind: ElementKind


@dataclass
class RawImage:
    """Image bytes obtained from the download cache or the network."""

    source_uri: str
    data: bytes
    extension: str = "png"

    @property
    def name(self) -> str:
        path = PurePosixPath(unquote(urlsplit(self.source_uri).path))
        stem = slugify(path.stem or "image")
        return f"{stem}.{self.extension}"

    @property
    def stored_name(self) -> str:
        """File name that stays distinct for images sharing a base name."""
        return f"{cache_key(self.source_uri)[:10]}-{self.name}"


@dataclass
class TransformedImage:
    """Output of one transform applied to one image."""

    image_name: str
    transform_name: str
    data: bytes

    @property
    def succeeded(self) -> bool:
        return bool(self.data)
