"""Pixel transforms and the service that dispatches them by name."""

from __future__ import annotations

import io
import logging
from typing import Callable, Dict, Optional, Tuple

from PIL import Image, ImageOps

from .models import TransformedImage

logger = logging.getLogger("image_crawler")

GRAYSCALE_TRANSFORM = "GrayScaleTransform"
SEPIA_TRANSFORM = "SepiaTransform"
TINT_TRANSFORM = "TintTransform"

TRANSFORM_ALIASES = {
    "grayscale": GRAYSCALE_TRANSFORM,
    "greyscale": GRAYSCALE_TRANSFORM,
    "sepia": SEPIA_TRANSFORM,
    "tint": TINT_TRANSFORM,
}

DEFAULT_TINT = (0.2, 0.5, 1.0)

# Standard sepia tone matrix applied to (r, g, b).
SEPIA_MATRIX = (
    0.393, 0.769, 0.189, 0,
    0.349, 0.686, 0.168, 0,
    0.272, 0.534, 0.131, 0,
)

_SAVE_FORMATS = {"JPEG", "PNG", "GIF", "BMP", "TIFF", "WEBP"}


class UnknownTransformError(ValueError):
    """Raised when a transform identifier has no registered operation."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown transform: {name}")
        self.name = name


def resolve_transform_name(name: str) -> str:
    """Map short aliases such as ``sepia`` to the registered identifier."""
    return TRANSFORM_ALIASES.get(name.strip().lower(), name)


def _encode(image: Image.Image, fmt: Optional[str]) -> bytes:
    fmt = (fmt or "PNG").upper()
    if fmt == "JPG":
        fmt = "JPEG"
    if fmt not in _SAVE_FORMATS:
        fmt = "PNG"
    if fmt == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class ImageTransforms:
    """Pillow implementations of the built-in transforms.

    Each operation takes encoded image bytes and returns encoded bytes in
    the same format where Pillow can write it, PNG otherwise.
    """

    def grayscale(self, data: bytes, fmt: Optional[str] = None) -> bytes:
        with Image.open(io.BytesIO(data)) as source:
            fmt = fmt or source.format
            converted = ImageOps.grayscale(source)
        return _encode(converted, fmt)

    def sepia(self, data: bytes, fmt: Optional[str] = None) -> bytes:
        with Image.open(io.BytesIO(data)) as source:
            fmt = fmt or source.format
            converted = source.convert("RGB").convert("RGB", SEPIA_MATRIX)
        return _encode(converted, fmt)

    def tint(
        self,
        data: bytes,
        fmt: Optional[str] = None,
        red: float = DEFAULT_TINT[0],
        green: float = DEFAULT_TINT[1],
        blue: float = DEFAULT_TINT[2],
    ) -> bytes:
        with Image.open(io.BytesIO(data)) as source:
            fmt = fmt or source.format
            rgb = source.convert("RGB")
        bands = rgb.split()
        scaled = [
            band.point(lambda value, factor=factor: min(255, int(value * factor)))
            for band, factor in zip(bands, (red, green, blue))
        ]
        return _encode(Image.merge("RGB", scaled), fmt)


class TransformService:
    """Applies a named transform to raw image bytes.

    The mapping from identifier to operation is built once here and never
    changes afterwards.
    """

    def __init__(
        self,
        transforms: Optional[ImageTransforms] = None,
        tint: Tuple[float, float, float] = DEFAULT_TINT,
    ) -> None:
        self.transforms = transforms or ImageTransforms()
        self.tint = tint
        self._transform_map: Dict[str, Callable[[bytes], bytes]] = {
            GRAYSCALE_TRANSFORM: lambda data: self.transforms.grayscale(data, None),
            SEPIA_TRANSFORM: lambda data: self.transforms.sepia(data, None),
            TINT_TRANSFORM: lambda data: self.transforms.tint(data, None, *self.tint),
        }

    @property
    def transform_names(self) -> Tuple[str, ...]:
        return tuple(self._transform_map)

    def require(self, name: str) -> str:
        """Return the registered identifier for ``name`` or raise."""
        resolved = resolve_transform_name(name)
        if resolved not in self._transform_map:
            raise UnknownTransformError(name)
        return resolved

    def apply_transform(
        self,
        image_name: str,
        transform_name: str,
        data: bytes,
    ) -> TransformedImage:
        """Run ``transform_name`` over ``data`` and wrap the result."""
        resolved = self.require(transform_name)
        logger.debug("Applying %s to %s", resolved, image_name)
        output = self._transform_map[resolved](data)
        return TransformedImage(
            image_name=image_name,
            transform_name=resolved,
            data=output or b"",
        )
