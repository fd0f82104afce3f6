"""Configuration objects and constants for the crawler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

CRAWLER_TYPES = ("sequential", "threaded")
DEFAULT_TRANSFORMS = ("grayscale", "sepia", "tint")
CACHE_DIR_ENV = "IMAGE_CRAWLER_CACHE_DIR"


@dataclass
class CrawlConfig:
    """Top-level settings that control crawling and image transformation."""

    output_root: Path
    max_depth: int = 2
    transforms: Tuple[str, ...] = field(default=DEFAULT_TRANSFORMS)
    crawler: str = "sequential"
    max_workers: int = 4
    request_timeout: float = 15.0
    render: bool = False
    navigation_timeout: float = 30.0
    clear_cache: bool = False

    def __post_init__(self) -> None:
        if self.crawler not in CRAWLER_TYPES:
            raise ValueError(
                f"Unknown crawler type {self.crawler!r} "
                f"(expected one of: {', '.join(CRAWLER_TYPES)})"
            )
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.transforms = tuple(self.transforms)

    @property
    def cache_dir(self) -> Path:
        override = os.getenv(CACHE_DIR_ENV)
        if override:
            return Path(override).expanduser()
        return self.output_root / "downloads"

    @property
    def transformed_dir(self) -> Path:
        return self.output_root / "transformed"
