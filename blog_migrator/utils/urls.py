"""
URL classification for media references found in post bodies.

:func:`classify_url` decides whether an image URL already lives on the
destination object storage, still lives on the legacy WordPress media host,
or is none of our business.  :func:`legacy_to_destination` implements the
path-suffix rule that maps a legacy upload URL to its destination URL.
"""

from __future__ import annotations

import enum
import re
from typing import Optional
from urllib.parse import urlsplit

UPLOADS_SEGMENT = "/wp-content/uploads/"

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")

# Image file extension at the end of a path, optional trailing query string.
IMAGE_EXT_RE = re.compile(r"\.(?:jpe?g|png|gif|webp)(?:\?[^\s\"']*)?$", re.IGNORECASE)


class UrlClass(str, enum.Enum):
    ALREADY_MIGRATED = "already_migrated"
    NEEDS_MIGRATION = "needs_migration"
    UNRELATED = "unrelated"


def normalize_host(host: Optional[str]) -> str:
    """Lowercase a host name and drop any scheme, path or port."""
    if not host:
        return ""
    text = host.strip().lower()
    if "://" in text:
        text = urlsplit(text).hostname or ""
    return text.split("/")[0].split(":")[0]


def url_host(url: str) -> Optional[str]:
    """Return the lowercased host of an absolute http(s) URL, or ``None``."""
    try:
        parts = urlsplit(url.strip())
        if parts.scheme.lower() not in ("http", "https"):
            return None
        return parts.hostname
    except ValueError:
        return None


def is_image_path(url: str) -> bool:
    """True when ``url`` ends in an image extension (query string allowed)."""
    return bool(IMAGE_EXT_RE.search(url or ""))


def classify_url(url: str, *, legacy_host: str, destination_host: str) -> UrlClass:
    """Classify ``url`` against the configured legacy and destination hosts.

    Pure function: no network access, no state.
    """
    host = url_host(url or "")
    if not host:
        return UrlClass.UNRELATED
    if destination_host and host == normalize_host(destination_host):
        return UrlClass.ALREADY_MIGRATED
    if legacy_host and host == normalize_host(legacy_host):
        try:
            path = urlsplit(url.strip()).path
        except ValueError:
            return UrlClass.UNRELATED
        if IMAGE_EXT_RE.search(path):
            return UrlClass.NEEDS_MIGRATION
    return UrlClass.UNRELATED


def upload_key_for(url: str, prefix: str = "") -> str:
    """Object key for a legacy image URL.

    The key is the path suffix after ``/wp-content/uploads/`` (the whole
    path when the segment is missing), without query string, so reruns
    write to the same key.
    """
    path = urlsplit(url.strip()).path
    idx = path.find(UPLOADS_SEGMENT)
    suffix = path[idx + len(UPLOADS_SEGMENT):] if idx >= 0 else path.lstrip("/")
    prefix = (prefix or "").strip("/")
    return f"{prefix}/{suffix}" if prefix else suffix


def legacy_to_destination(url: str, destination_base: str, prefix: str = "") -> str:
    """Destination public URL for a legacy image URL."""
    return f"{destination_base.rstrip('/')}/{upload_key_for(url, prefix)}"
