"""
Post sources for the legacy WordPress site.

Two sources are provided, both answering ``fetch_posts_page(page_index,
page_size)`` with a list of :class:`SourcePost` in a stable order:

* :class:`WxrPostSource` reads a WXR export (``Tools → Export``) once and
  slices it into pages.  Only published items of type ``post`` that have
  a title and a slug are kept.
* :class:`WordPressRestSource` pages through ``/wp-json/wp/v2/posts``
  ordered by id.
"""

from __future__ import annotations

import html
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from blog_migrator.migrators.media_migrator import DEFAULT_TIMEOUT, with_retries
from blog_migrator.models.post import SourcePost
from blog_migrator.parsers.html_cleaner import html_to_text
from blog_migrator.utils.errors import SourceFetchError

NS = {
    "wp": "http://wordpress.org/export/1.2/",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "excerpt": "http://wordpress.org/export/1.2/excerpt/",
    "dc": "http://purl.org/dc/elements/1.1/",
}

_EMPTY_WP_DATE = "0000-00-00 00:00:00"
_WP_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}$")


def parse_wp_gmt_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a WordPress ``post_date_gmt`` value into an aware UTC datetime."""
    if not value:
        return None
    value = value.strip()
    if not value or value == _EMPTY_WP_DATE or not _WP_DATE_RE.match(value):
        return None
    return datetime.strptime(value.replace("T", " "), "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)


def _text(item: ET.Element, path: str) -> str:
    el = item.find(path, NS)
    return (el.text or "") if el is not None else ""


def _slug_from_permalink(permalink: str) -> str:
    path = urlparse(permalink).path if permalink else ""
    return path.strip("/").split("/")[-1] if path.strip("/") else ""


def _postmeta(item: ET.Element, key: str) -> Optional[str]:
    for meta in item.findall("wp:postmeta", NS):
        if _text(meta, "wp:meta_key") == key:
            return _text(meta, "wp:meta_value")
    return None


def parse_wxr_authors(root: ET.Element) -> Dict[str, str]:
    """Map author login to display name from ``<wp:author>`` declarations."""
    authors: Dict[str, str] = {}
    for author in root.iter(f"{{{NS['wp']}}}author"):
        login = _text(author, "wp:author_login").strip()
        name = _text(author, "wp:author_display_name").strip()
        if login and name:
            authors[login] = name
    return authors


def extract_posts_from_xml(file_path: str) -> List[SourcePost]:
    """Parse published posts from a WordPress WXR export.

    Args:
        file_path (str): Path to the WXR XML file.

    Returns:
        list: :class:`SourcePost` objects in export order.

    Raises:
        FileNotFoundError: If the file does not exist.
        ET.ParseError: If the XML is malformed.
        ValueError: If an item cannot be converted, with the item id for context.
    """
    tree = ET.parse(file_path)
    root = tree.getroot()
    authors = parse_wxr_authors(root)
    posts: List[SourcePost] = []
    for item in root.iter("item"):
        if _text(item, "wp:post_type").strip() != "post":
            continue
        if _text(item, "wp:status").strip() != "publish":
            continue
        post_id = _text(item, "wp:post_id").strip() or None
        try:
            title = html.unescape(_text(item, "title")).strip()
            permalink = _text(item, "link").strip()
            slug = _text(item, "wp:post_name").strip() or _slug_from_permalink(permalink)
            if not title or not slug:
                continue

            categories = [c.text.strip() for c in item.findall("category[@domain='category']") if c.text]
            tags = [t.text.strip() for t in item.findall("category[@domain='post_tag']") if t.text]
            author_login = _text(item, "dc:creator").strip()
            meta_description = _postmeta(item, "rank_math_description")

            posts.append(
                SourcePost(
                    slug=slug,
                    title=title,
                    content=_text(item, "content:encoded"),
                    excerpt=_text(item, "excerpt:encoded").strip() or None,
                    published_at=parse_wp_gmt_date(_text(item, "wp:post_date_gmt")),
                    wp_post_id=post_id,
                    permalink=permalink or None,
                    author_name=authors.get(author_login, author_login) or None,
                    categories=[html.unescape(c) for c in categories],
                    tags=[html.unescape(t) for t in tags],
                    meta_description=html.unescape(meta_description.strip()) if meta_description else None,
                )
            )
        except Exception as e:
            raise ValueError(f"Error processing item with ID {post_id or 'unknown'} in {file_path}: {e}") from e
    return posts


class WxrPostSource:
    """Pages over the posts of a WXR export file."""

    def __init__(self, file_path: str) -> None:
        self.file_path = file_path
        self._posts: Optional[List[SourcePost]] = None

    @property
    def posts(self) -> List[SourcePost]:
        if self._posts is None:
            self._posts = extract_posts_from_xml(self.file_path)
        return self._posts

    def fetch_posts_page(self, page_index: int, page_size: int) -> List[SourcePost]:
        try:
            posts = self.posts
        except (OSError, ET.ParseError, ValueError) as e:
            raise SourceFetchError(f"Could not read export {self.file_path}: {e}") from e
        start = page_index * page_size
        return posts[start:start + page_size]


class WordPressRestSource:
    """
    Pages over ``/wp-json/wp/v2/posts``.

    ``page_index`` is zero-based; WordPress pages start at 1.  Asking for a
    page past the end makes WordPress answer 400
    ``rest_post_invalid_page_number``, which is treated as an empty page.
    """

    def __init__(
        self,
        site_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        base_delay: float = 0.7,
    ) -> None:
        self.site_url = site_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    @property
    def endpoint(self) -> str:
        return f"{self.site_url}/wp-json/wp/v2/posts"

    def fetch_posts_page(self, page_index: int, page_size: int) -> List[SourcePost]:
        params = {
            "page": page_index + 1,
            "per_page": page_size,
            "orderby": "id",
            "order": "asc",
            "_embed": 1,
        }

        def do_request() -> requests.Response:
            return self.session.get(self.endpoint, params=params, timeout=self.timeout)

        try:
            resp = with_retries(do_request, max_attempts=self.max_retries + 1, base_delay=self.base_delay)
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 400 and _is_invalid_page(e.response):
                return []
            raise SourceFetchError(f"WordPress page {page_index} failed: {e}") from e
        except requests.RequestException as e:
            raise SourceFetchError(f"WordPress page {page_index} failed: {e}") from e

        try:
            items = resp.json()
        except ValueError as e:
            raise SourceFetchError(f"WordPress page {page_index} is not JSON") from e
        if not isinstance(items, list):
            raise SourceFetchError(f"WordPress page {page_index} is not a list of posts")
        return [post_from_rest(item) for item in items if item.get("slug")]


def _is_invalid_page(resp: requests.Response) -> bool:
    try:
        return resp.json().get("code") == "rest_post_invalid_page_number"
    except ValueError:
        return False


def _rendered(item: Dict[str, Any], field: str) -> str:
    value = item.get(field) or {}
    if isinstance(value, dict):
        return value.get("rendered") or ""
    return str(value)


def post_from_rest(item: Dict[str, Any]) -> SourcePost:
    """Convert one ``wp/v2/posts`` JSON object (with ``_embed``) to a :class:`SourcePost`."""
    embedded = item.get("_embedded") or {}
    authors = embedded.get("author") or []
    author_name = authors[0].get("name") if authors and isinstance(authors[0], dict) else None

    categories: List[str] = []
    tags: List[str] = []
    for group in embedded.get("wp:term") or []:
        for term in group or []:
            name = html.unescape(term.get("name") or "")
            if term.get("taxonomy") == "category":
                categories.append(name)
            elif term.get("taxonomy") == "post_tag":
                tags.append(name)

    excerpt = html_to_text(_rendered(item, "excerpt"))
    return SourcePost(
        slug=item["slug"],
        title=html_to_text(_rendered(item, "title")),
        content=_rendered(item, "content"),
        excerpt=excerpt or None,
        published_at=parse_wp_gmt_date(item.get("date_gmt")),
        wp_post_id=str(item["id"]) if item.get("id") is not None else None,
        permalink=item.get("link"),
        author_name=author_name,
        categories=categories,
        tags=tags,
    )
