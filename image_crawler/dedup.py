"""Thread-safe registry of URIs that have already entered the traversal."""

from __future__ import annotations

import threading
from typing import Iterable, List, Optional, Set

from .utils import canonicalize_uri


class UriSet:
    """Set of canonical URIs with an atomic first-caller-wins claim."""

    def __init__(self, uris: Optional[Iterable[str]] = None) -> None:
        self._lock = threading.Lock()
        self._uris: Set[str] = {canonicalize_uri(uri) for uri in uris or ()}

    def try_claim(self, uri: str) -> bool:
        """Register ``uri`` and return True only for the first caller."""
        key = canonicalize_uri(uri)
        with self._lock:
            if key in self._uris:
                return False
            self._uris.add(key)
            return True

    def __contains__(self, uri: object) -> bool:
        if not isinstance(uri, str):
            return False
        key = canonicalize_uri(uri)
        with self._lock:
            return key in self._uris

    def __len__(self) -> int:
        with self._lock:
            return len(self._uris)

    def snapshot(self) -> List[str]:
        with self._lock:
            return sorted(self._uris)
