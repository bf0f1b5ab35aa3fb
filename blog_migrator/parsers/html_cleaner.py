"""
HTML cleanup and metadata helpers for migrated posts.

:func:`clean_content` strips WordPress block-editor comments and document
wrappers, rewrites image URLs using a per-post mapping, falls back to a
host rewrite for any upload URL the mapping missed, and tidies whitespace.
:func:`calculate_reading_time` and :func:`generate_excerpt` derive
metadata from the same HTML.

Everything here is regex based and best effort: patterns that do not match
are simply left alone, nothing raises on malformed markup.
"""

from __future__ import annotations

import html as html_lib
import math
import re
from typing import Collection, Dict, Optional

from blog_migrator.utils.urls import UPLOADS_SEGMENT, normalize_host, upload_key_for

__all__ = [
    "clean_content",
    "rewrite_image_urls",
    "html_to_text",
    "calculate_reading_time",
    "generate_excerpt",
]

WORDS_PER_MINUTE = 200
DEFAULT_EXCERPT_LENGTH = 160
ELLIPSIS = "…"

# <!-- wp:paragraph -->, <!-- /wp:paragraph -->, <!-- wp:image {"id":5} /-->
_WP_BLOCK_COMMENT_RE = re.compile(r"<!--\s*/?wp:[\s\S]*?-->")

_DOCTYPE_RE = re.compile(r"<!DOCTYPE[^>]*>", re.IGNORECASE)
_HEAD_RE = re.compile(r"<head\b[^>]*>[\s\S]*?</head\s*>", re.IGNORECASE)
_WRAPPER_TAG_RE = re.compile(r"</?(?:html|body)\b[^>]*>", re.IGNORECASE)

_EMPTY_PARAGRAPH_RE = re.compile(r"<p(?:\s[^>]*)?>\s*</p\s*>", re.IGNORECASE)
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")

# A mapped URL only counts as a match when it is not the prefix of a longer URL.
_URL_END = r"(?=[\s\"'<>),]|$)"
_URL_END_RE = re.compile(_URL_END)


def _strip_block_comments(text: str) -> str:
    return _WP_BLOCK_COMMENT_RE.sub("", text)


def _strip_document_wrapper(text: str) -> str:
    text = _DOCTYPE_RE.sub("", text)
    text = _HEAD_RE.sub("", text)
    return _WRAPPER_TAG_RE.sub("", text)


def _drop_empty_paragraphs(text: str) -> str:
    # Nested empties collapse one level per pass.
    while True:
        new_text = _EMPTY_PARAGRAPH_RE.sub("", text)
        if new_text == text:
            return text
        text = new_text


def _apply_mapping(text: str, url_map: Dict[str, str]) -> str:
    keys = sorted((k for k in url_map if k), key=len, reverse=True)
    if not keys:
        return text
    pattern = re.compile("(?:" + "|".join(re.escape(k) for k in keys) + ")" + _URL_END)
    return pattern.sub(lambda m: url_map[m.group(0)], text)


def _apply_host_fallback(
    text: str,
    legacy_host: str,
    destination_base: str,
    keep: Collection[str],
    key_prefix: str,
) -> str:
    host = normalize_host(legacy_host)
    pattern = re.compile(
        r"https?://" + re.escape(host) + re.escape(UPLOADS_SEGMENT) + r"[^\s\"'<>),]*",
        re.IGNORECASE,
    )
    base = destination_base.rstrip("/")

    def _rewrite(m: "re.Match[str]") -> str:
        url = m.group(0)
        # kept URLs may run past the match, e.g. "photo(1).jpg"
        if any(
            text.startswith(k, m.start()) and _URL_END_RE.match(text, m.start() + len(k)) for k in keep
        ):
            return url
        key = upload_key_for(url, key_prefix)
        query = url[url.find("?"):] if "?" in url else ""
        return f"{base}/{key}{query}"

    return pattern.sub(_rewrite, text)


def rewrite_image_urls(
    text: str,
    url_map: Optional[Dict[str, str]] = None,
    *,
    legacy_host: Optional[str] = None,
    destination_base: Optional[str] = None,
    keep: Collection[str] = (),
    key_prefix: str = "",
) -> str:
    """Replace legacy URLs in ``text``.

    Every key of ``url_map`` is replaced by its value wherever it appears as
    a whole URL.  When both ``legacy_host`` and ``destination_base`` are
    given, remaining ``https?://<legacy_host>/wp-content/uploads/...`` URLs
    are rewritten to ``destination_base`` keeping the path suffix, except
    those listed in ``keep``.
    """
    if url_map:
        text = _apply_mapping(text, url_map)
    if legacy_host and destination_base:
        text = _apply_host_fallback(text, legacy_host, destination_base, keep, key_prefix)
    return text


def clean_content(
    html: str,
    url_map: Optional[Dict[str, str]] = None,
    *,
    legacy_host: Optional[str] = None,
    destination_base: Optional[str] = None,
    keep: Collection[str] = (),
    key_prefix: str = "",
) -> str:
    """Clean WordPress HTML and rewrite its image URLs.

    :param html: Raw post body.
    :param url_map: Legacy URL → destination URL for this post.
    :param legacy_host: WordPress media host, enables the catch-all rewrite.
    :param destination_base: Public base URL of the object storage.
    :param keep: Legacy URLs the catch-all must leave untouched (images whose
        migration failed in this run).
    :param key_prefix: Object key prefix used by the uploader.
    :return: The cleaned HTML.
    """
    if not html:
        return ""
    text = _strip_block_comments(html)
    text = _strip_document_wrapper(text)
    text = _drop_empty_paragraphs(text)
    text = rewrite_image_urls(
        text,
        url_map,
        legacy_host=legacy_host,
        destination_base=destination_base,
        keep=keep,
        key_prefix=key_prefix,
    )
    text = _EXCESS_NEWLINES_RE.sub("\n\n", text)
    return text.strip()


def html_to_text(html: str) -> str:
    """Strip tags, decode entities and collapse whitespace."""
    if not html:
        return ""
    text = _TAG_RE.sub(" ", html)
    text = html_lib.unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def calculate_reading_time(html: str) -> int:
    """Minutes to read ``html`` at 200 words per minute, at least 1."""
    words = len(html_to_text(html).split())
    minutes = math.floor(words / WORDS_PER_MINUTE + 0.5)
    return max(1, minutes)


def generate_excerpt(html: str, max_length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """Plain-text excerpt of at most ``max_length`` characters plus an ellipsis.

    The cut backs off to the last whitespace so no word is split.
    """
    text = html_to_text(html)
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    boundary = cut.rfind(" ")
    if boundary > 0:
        cut = cut[:boundary]
    return cut.rstrip() + ELLIPSIS
