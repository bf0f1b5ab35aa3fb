"""
Migration of a single post.

:class:`PostMigrator` runs the per-post pipeline: find the images in the
body, re-host the ones still on the legacy host, rewrite the HTML with the
resulting mapping, compute metadata, and upsert the record.

An image that cannot be fetched or uploaded does not sink the post; it
keeps its legacy URL and is counted in ``images_failed``.  Only a failed
upsert, a rejected record or an unexpected error marks the post as
failed.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from blog_migrator.extractors.image_extractor import extract_image_urls
from blog_migrator.migrators.media_migrator import fetch_image_bytes
from blog_migrator.models.post import MigrationOutcome, NormalizedPost, SourcePost
from blog_migrator.parsers.html_cleaner import calculate_reading_time, clean_content, generate_excerpt
from blog_migrator.utils.errors import (
    ERRORS,
    MediaError,
    PostValidationError,
    StoreUnavailableError,
    report_error,
    report_ok,
)
from blog_migrator.utils.urls import UrlClass, classify_url, legacy_to_destination, upload_key_for, url_host

FetchFn = Callable[[str], Tuple[bytes, str]]


def _default_log(message: str, level: str = "INFO") -> None:
    print(f"[{level}] {message}")


class PostMigrator:
    """
    Migrates one :class:`SourcePost` at a time.

    The instance holds only collaborators and settings; the URL mapping for
    a post lives in local variables of :meth:`migrate`, so one migrator can
    be shared by all worker threads.

    :param legacy_host: WordPress media host (``blog.example.com``).
    :param destination_base: Public base URL of the object storage.
    :param uploader: Object with ``upload(data, key, content_type) -> url``
        and, optionally, ``exists(key) -> bool``.
    :param store: Object with ``upsert_post(NormalizedPost)``.
    :param fetch_image: ``url -> (bytes, content_type)``; defaults to
        :func:`fetch_image_bytes`.
    """

    def __init__(
        self,
        *,
        legacy_host: str,
        destination_base: str,
        uploader: Any,
        store: Any,
        fetch_image: Optional[FetchFn] = None,
        key_prefix: str = "",
        check_existing: bool = False,
        dry_run: bool = False,
        excerpt_length: int = 160,
        meta_description_length: int = 155,
        fallback_featured_image: Optional[str] = None,
        log: Optional[Callable[..., None]] = None,
        report_dir: Optional[str] = None,
    ) -> None:
        self.legacy_host = legacy_host
        self.destination_base = destination_base.rstrip("/")
        self.destination_host = url_host(self.destination_base) or ""
        self.uploader = uploader
        self.store = store
        self.fetch_image = fetch_image or fetch_image_bytes
        self.key_prefix = key_prefix
        self.check_existing = check_existing
        self.dry_run = dry_run
        self.excerpt_length = excerpt_length
        self.meta_description_length = meta_description_length
        self.fallback_featured_image = fallback_featured_image or None
        self.log = log or _default_log
        self.report_dir = report_dir

    def classify(self, url: str) -> UrlClass:
        return classify_url(url, legacy_host=self.legacy_host, destination_host=self.destination_host)

    # ------------------------------------------------------------------
    # Image mapping
    # ------------------------------------------------------------------
    def _already_stored(self, url: str) -> bool:
        exists = getattr(self.uploader, "exists", None)
        if not self.check_existing or exists is None:
            return False
        return bool(exists(upload_key_for(url, self.key_prefix)))

    def build_url_map(self, post: SourcePost) -> Tuple[Dict[str, str], List[str]]:
        """
        Re-host the legacy images of ``post``.

        :return: ``(url_map, failed)`` where ``url_map`` maps each handled
            URL to its destination (identity for URLs already on the
            destination) and ``failed`` lists legacy URLs left unmapped.
        """
        url_map: Dict[str, str] = {}
        failed: List[str] = []
        for url in extract_image_urls(post.content):
            kind = self.classify(url)
            if kind is UrlClass.ALREADY_MIGRATED:
                url_map[url] = url
                continue
            if kind is UrlClass.UNRELATED or self.dry_run:
                continue
            code = "IMAGE_FETCH"
            try:
                if self._already_stored(url):
                    self.log(f"Already in storage, skipping upload: {url}", level="DEBUG")
                    url_map[url] = legacy_to_destination(url, self.destination_base, self.key_prefix)
                    continue
                data, content_type = self.fetch_image(url)
                code = "IMAGE_UPLOAD"
                url_map[url] = self.uploader.upload(data, upload_key_for(url, self.key_prefix), content_type)
            except MediaError as e:
                failed.append(url)
                self.log(f"Image left on legacy host for '{post.slug}': {url} ({e})", level="WARNING")
                report_error(code, post, e, extra={"image": url}, report_dir=self.report_dir)
        return url_map, failed

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------
    def normalize(self, post: SourcePost, url_map: Dict[str, str], failed: List[str]) -> NormalizedPost:
        content = clean_content(
            post.content,
            url_map,
            legacy_host=self.legacy_host,
            destination_base=self.destination_base,
            keep=failed,
            key_prefix=self.key_prefix,
        )
        images = extract_image_urls(content)
        excerpt = (post.excerpt or "").strip() or generate_excerpt(content, self.excerpt_length)
        return NormalizedPost(
            slug=post.slug,
            title=post.title,
            content=content,
            excerpt=excerpt,
            reading_time=calculate_reading_time(content),
            featured_image=images[0] if images else self.fallback_featured_image,
            author_name=post.author_name,
            published_at=post.published_at,
            categories=post.categories,
            tags=post.tags,
            meta_title=post.title,
            meta_description=post.meta_description or generate_excerpt(content, self.meta_description_length),
            image_urls=[u for u in images if self.classify(u) is UrlClass.ALREADY_MIGRATED],
        )

    # ------------------------------------------------------------------
    # Full pipeline
    # ------------------------------------------------------------------
    def _failure(self, post: SourcePost, code: str, exc: BaseException, migrated: int, failed: int) -> MigrationOutcome:
        reason = f"{ERRORS.get(code, code)}: {exc}"
        self.log(f"Post '{post.slug}' failed: {reason}", level="ERROR")
        report_error(code, post, exc, report_dir=self.report_dir)
        return MigrationOutcome(
            slug=post.slug,
            success=False,
            images_migrated=migrated,
            images_failed=failed,
            reason=reason,
            dry_run=self.dry_run,
            permalink=post.permalink,
        )

    def migrate(self, post: SourcePost) -> MigrationOutcome:
        """Run the whole pipeline for ``post`` and report how it went."""
        migrated = failed_count = 0
        try:
            url_map, failed = self.build_url_map(post)
            migrated = sum(1 for src, dst in url_map.items() if src != dst)
            failed_count = len(failed)

            try:
                record = self.normalize(post, url_map, failed)
            except ValidationError as e:
                return self._failure(post, "VALIDATION", e, migrated, failed_count)

            if self.dry_run:
                report_ok("POST_DRY_RUN", post, {"images": len(record.image_urls)}, report_dir=self.report_dir)
            else:
                self.store.upsert_post(record)
                report_ok(
                    "POST_MIGRATED",
                    post,
                    {"images_migrated": migrated, "images_failed": failed_count},
                    report_dir=self.report_dir,
                )
        except StoreUnavailableError as e:
            return self._failure(post, "STORE_UNAVAILABLE", e, migrated, failed_count)
        except PostValidationError as e:
            return self._failure(post, "VALIDATION", e, migrated, failed_count)
        except Exception as e:
            return self._failure(post, "UNEXPECTED", e, migrated, failed_count)

        return MigrationOutcome(
            slug=post.slug,
            success=True,
            images_migrated=migrated,
            images_failed=failed_count,
            dry_run=self.dry_run,
            permalink=post.permalink,
        )
