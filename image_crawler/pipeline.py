"""Per-image acquire, transform and count pipeline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from PIL import Image, UnidentifiedImageError

from .models import RawImage, TransformedImage
from .transforms import TransformService, UnknownTransformError

logger = logging.getLogger("image_crawler")


class ImageAcquirer(Protocol):
    def get_or_download_image(self, uri: str) -> Optional[RawImage]: ...


class ImageTransformer(Protocol):
    def transform_image(self, image: RawImage) -> int: ...


class LocalTransformer:
    """Fans an image out over the configured transforms in this process."""

    def __init__(
        self,
        service: TransformService,
        transform_names: Iterable[str],
        output_dir: Optional[Path] = None,
    ) -> None:
        self.service = service
        self.transform_names: List[str] = [
            service.require(name) for name in transform_names
        ]
        self.output_dir = output_dir

    def _apply(self, image: RawImage, transform_name: str) -> Optional[TransformedImage]:
        try:
            return self.service.apply_transform(image.name, transform_name, image.data)
        except UnknownTransformError:
            raise
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            ValueError,
        ) as exc:
            logger.warning(
                "Transform %s failed for %s: %s",
                transform_name,
                image.source_uri,
                exc,
            )
            return None

    def _store(self, image: RawImage, result: TransformedImage) -> None:
        if self.output_dir is None:
            return
        destination = self.output_dir / result.transform_name / image.stored_name
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(result.data)
        except OSError as exc:
            logger.warning("Failed to write %s: %s", destination, exc)

    def transform_image(self, image: RawImage) -> int:
        """Apply every configured transform and count the non-empty results."""
        succeeded = 0
        for transform_name in self.transform_names:
            result = self._apply(image, transform_name)
            if result is None or not result.succeeded:
                continue
            self._store(image, result)
            succeeded += 1
        return succeeded


class ImagePipeline:
    """Acquires one image and runs it through the transformer."""

    def __init__(self, acquirer: ImageAcquirer, transformer: ImageTransformer) -> None:
        self.acquirer = acquirer
        self.transformer = transformer

    def process_image(self, uri: str) -> int:
        image = self.acquirer.get_or_download_image(uri)
        if image is None:
            return 0
        count = self.transformer.transform_image(image)
        logger.debug("Produced %d transformed image(s) for %s", count, uri)
        return count
