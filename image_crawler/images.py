"""Image downloading, validation and on-disk caching."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit
from urllib.request import url2pathname

import requests
from filetype import guess

from .models import RawImage
from .utils import cache_key

logger = logging.getLogger("image_crawler")

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MIN_IMAGE_BYTES = 64
ALLOWED_IMAGE_TYPES = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff"}
USER_AGENT = "image-crawler/0.1"


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        if ext == "tif":
            return "tiff"
        return ext
    return None


def infer_image_extension(content_type: Optional[str], data: bytes) -> Optional[str]:
    """Guess an image file extension from HTTP metadata or file signature."""
    detected = detect_image_format(data)
    if detected:
        return detected
    if not content_type:
        return None
    parts = content_type.split(";")[0].split("/")
    if len(parts) == 2 and parts[0] == "image":
        ext = parts[1].strip().lower()
        if ext == "jpeg":
            ext = "jpg"
        return ext
    return None


class ImageDownloader:
    """Returns images from the cache directory, downloading them on a miss."""

    def __init__(
        self,
        cache_dir: Path,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ) -> None:
        self.cache_dir = cache_dir
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout

    def clear_cache(self) -> None:
        if self.cache_dir.exists():
            logger.info("Clearing image cache at %s", self.cache_dir)
            shutil.rmtree(self.cache_dir)

    def _cached_path(self, uri: str) -> Optional[Path]:
        if not self.cache_dir.is_dir():
            return None
        matches = sorted(self.cache_dir.glob(f"{cache_key(uri)}.*"))
        return matches[0] if matches else None

    def _fetch(self, uri: str) -> Optional[tuple[bytes, str]]:
        parts = urlsplit(uri)
        if parts.scheme == "file":
            path = Path(url2pathname(parts.path))
            try:
                return path.read_bytes(), ""
            except OSError as exc:
                logger.warning("Failed to read image %s: %s", uri, exc)
                return None
        try:
            resp = self.session.get(uri, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch image %s: %s", uri, exc)
            return None
        return resp.content, resp.headers.get("Content-Type", "")

    def get_or_download_image(self, uri: str) -> Optional[RawImage]:
        """Return the image at ``uri`` or None when it cannot be obtained."""
        cached = self._cached_path(uri)
        if cached is not None:
            try:
                data = cached.read_bytes()
            except OSError as exc:
                logger.warning("Ignoring unreadable cache entry %s: %s", cached, exc)
            else:
                logger.debug("Cache hit for %s", uri)
                return RawImage(source_uri=uri, data=data, extension=cached.suffix[1:])

        fetched = self._fetch(uri)
        if fetched is None:
            return None
        data, content_type = fetched

        if len(data) < MIN_IMAGE_BYTES:
            logger.warning("Skipping %s: response too small", uri)
            return None
        if len(data) > MAX_IMAGE_BYTES:
            logger.warning(
                "Skipping %s: image larger than %s bytes",
                uri,
                MAX_IMAGE_BYTES,
            )
            return None

        extension = infer_image_extension(content_type, data)
        if not extension or extension.lower() not in ALLOWED_IMAGE_TYPES:
            logger.warning(
                "Skipping %s: unsupported image type (Content-Type=%s)",
                uri,
                content_type,
            )
            return None

        destination = self.cache_dir / f"{cache_key(uri)}.{extension}"
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            logger.warning("Failed to cache image %s: %s", destination, exc)

        return RawImage(source_uri=uri, data=data, extension=extension)
