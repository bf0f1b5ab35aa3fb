"""
Pattern-based discovery of image URLs in post HTML.

Two compiled matchers are used instead of an HTML parser:

* quoted attribute values that end in an image extension
  (``src="…/a.jpg"``, ``href='…/b.png?w=300'``);
* responsive-image lists (``srcset``/``data-srcset``) whose comma-separated
  ``URL descriptor`` entries are split and the leading URL of each entry
  kept when it passes the same extension test.

Known false negatives: unquoted attributes, URLs containing whitespace or
quotes, and images referenced only from CSS or scripts.  Malformed
fragments are skipped, never raised on.
"""

from __future__ import annotations

import re
from typing import List, Tuple

from blog_migrator.utils.urls import is_image_path

_ATTR_IMAGE_RE = re.compile(
    r"""(["'])([^"'\s<>]+?\.(?:jpe?g|png|gif|webp)(?:\?[^"'\s<>]*)?)\1""",
    re.IGNORECASE,
)

_SRCSET_RE = re.compile(
    r"""\b(?:data-)?srcset\s*=\s*(["'])(.*?)\1""",
    re.IGNORECASE | re.DOTALL,
)


def _srcset_candidates(html: str) -> List[Tuple[int, str]]:
    found: List[Tuple[int, str]] = []
    for m in _SRCSET_RE.finditer(html):
        offset = m.start(2)
        for entry in m.group(2).split(","):
            tokens = entry.split()
            if tokens and is_image_path(tokens[0]):
                found.append((offset, tokens[0]))
            offset += len(entry) + 1
    return found


def extract_image_urls(html: str) -> List[str]:
    """Return unique image URLs in ``html``, in order of first appearance."""
    if not html:
        return []
    candidates = [(m.start(2), m.group(2)) for m in _ATTR_IMAGE_RE.finditer(html)]
    candidates.extend(_srcset_candidates(html))
    candidates.sort(key=lambda item: item[0])

    seen = set()
    urls: List[str] = []
    for _, url in candidates:
        if url not in seen:
            seen.add(url)
            urls.append(url)
    return urls
