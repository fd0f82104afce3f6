"""Utility helpers for string normalization and URI handling."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urldefrag, urlsplit, urlunsplit

SLUG_PATTERN = re.compile(r"[^a-z0-9.]+")
DEFAULT_PORTS = {"http": 80, "https": 443}


def slugify(value: str, fallback: str = "image") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-.")
    return normalized or fallback


def canonicalize_uri(uri: str) -> str:
    """Return the canonical form used to decide whether two URIs are the same.

    URIs that cannot be parsed (bad port, broken IPv6 literal) are returned
    stripped but otherwise unchanged.
    """
    uri = uri.strip()
    try:
        uri, _ = urldefrag(uri)
        parts = urlsplit(uri)
        port = parts.port
    except ValueError:
        return uri
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return urlunsplit((scheme, parts.netloc, parts.path, parts.query, ""))

    host = (parts.hostname or "").lower()
    if port and port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"
    if parts.username:
        credentials = parts.username
        if parts.password:
            credentials += f":{parts.password}"
        host = f"{credentials}@{host}"
    path = parts.path or "/"
    return urlunsplit((scheme, host, path, parts.query, ""))


def cache_key(uri: str) -> str:
    return hashlib.sha1(canonicalize_uri(uri).encode("utf-8")).hexdigest()
