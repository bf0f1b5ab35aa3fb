"""
High-level orchestration of the WordPress → new blog migration.

This module defines a :class:`BlogMigrationTool` class that ties together
the post sources, the per-post :class:`PostMigrator`, object storage and
the destination store into a complete pipeline.  It pages through the
source corpus, dispatches the posts of each page to a bounded thread pool,
collects one :class:`MigrationOutcome` per post and returns a
:class:`MigrationSummary`.  It also writes the run log and, after a live
run, a redirect CSV.

Configuration is supplied via a JSON file path or directly as a
dictionary.  Missing keys are filled with defaults and, for credentials,
with environment variables:

``wordpress``
    ``site_url``, ``xml_path`` and ``media_host``.
``storage``
    Cloudflare R2 credentials, ``bucket``, ``public_url`` and ``key_prefix``.
``supabase``
    ``url``, ``service_role_key`` and ``table``.
``migration``
    Paging, concurrency, retry and dry-run settings.

Collaborators (``source``, ``uploader``, ``store``, ``fetch_image``) can be
injected, which is how the tests run the driver without any network.
"""

from __future__ import annotations

import json
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional

import requests

from blog_migrator.extractors.image_extractor import extract_image_urls
from blog_migrator.extractors.wordpress_extractor import WordPressRestSource, WxrPostSource
from blog_migrator.migrators.media_migrator import R2Uploader, RateLimiter, fetch_image_bytes
from blog_migrator.migrators.post_migrator import PostMigrator
from blog_migrator.migrators.supabase_migrator import DEFAULT_TABLE, DuckDBStore, SupabaseStore
from blog_migrator.models.post import MigrationOutcome, MigrationSummary
from blog_migrator.utils.errors import DEFAULT_REPORT_DIR, SourceFetchError, SourcePageError
from blog_migrator.utils.redirects import generate_redirects_csv
from blog_migrator.utils.urls import url_host


class BlogMigrationTool:
    """
    Encapsulates all state and behavior required to migrate the posts of a
    WordPress site.  This class is responsible for reading configuration,
    building the collaborators and driving the run.  Detailed success and
    failure information is recorded using the :mod:`blog_migrator.utils.errors`
    module.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        *,
        config_file: Optional[str] = None,
        source: Any = None,
        uploader: Any = None,
        store: Any = None,
        fetch_image: Any = None,
    ) -> None:
        if config_file and os.path.exists(config_file):
            with open(config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        elif config is None:
            config = {}

        # Ensure essential keys exist to prevent KeyErrors
        config.setdefault("wordpress", {})
        config["wordpress"].setdefault("site_url", os.getenv("WORDPRESS_SITE_URL", ""))
        config["wordpress"].setdefault("xml_path", "")
        config["wordpress"].setdefault("media_host", "")

        config.setdefault("storage", {})
        config["storage"].setdefault("account_id", os.getenv("CLOUDFLARE_R2_ACCOUNT_ID", ""))
        config["storage"].setdefault("access_key_id", os.getenv("CLOUDFLARE_R2_ACCESS_KEY_ID", ""))
        config["storage"].setdefault("secret_access_key", os.getenv("CLOUDFLARE_R2_SECRET_ACCESS_KEY", ""))
        config["storage"].setdefault("bucket", os.getenv("CLOUDFLARE_R2_ADMIN_BUCKET", ""))
        config["storage"].setdefault("public_url", os.getenv("CLOUDFLARE_R2_ADMIN_PUBLIC_URL", ""))
        config["storage"].setdefault("key_prefix", "")

        config.setdefault("supabase", {})
        config["supabase"].setdefault("url", os.getenv("SUPABASE_URL", ""))
        config["supabase"].setdefault("service_role_key", os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""))
        config["supabase"].setdefault("table", DEFAULT_TABLE)

        config.setdefault("migration", {})
        migration = config["migration"]
        migration.setdefault("page_size", 20)
        migration.setdefault("max_concurrency", 5)
        migration.setdefault("start_page", 0)
        migration.setdefault("dry_run", False)
        migration.setdefault("timeout", 30)
        migration.setdefault("max_retries", 2)
        migration.setdefault("retry_base_delay", 0.7)
        migration.setdefault("requests_per_minute", 0)
        migration.setdefault("check_existing", True)
        migration.setdefault("excerpt_length", 160)
        migration.setdefault("meta_description_length", 155)
        migration.setdefault("fallback_featured_image", "")
        migration.setdefault("database_path", "")
        migration.setdefault("new_site_url", "")
        migration.setdefault("blog_path", "/blog")
        migration.setdefault("report_dir", DEFAULT_REPORT_DIR)
        migration.setdefault("max_duration", None)

        self.config = config
        self.report_dir: str = migration["report_dir"]
        self._log_lock = threading.Lock()
        self._session: Optional[requests.Session] = None
        self._source = source
        self._uploader = uploader
        self._store = store
        self._fetch_image = fetch_image

    def log_message(self, message: str, level: str = "INFO") -> None:
        ts = datetime.now().isoformat(timespec="seconds")
        with self._log_lock:
            print(f"[{level}] {message}")
            # Append to log file
            os.makedirs(self.report_dir, exist_ok=True)
            with open(os.path.join(self.report_dir, "migration.log"), "a", encoding="utf-8") as f:
                f.write(f"{ts} {level}: {message}\n")

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    @property
    def dry_run(self) -> bool:
        return bool(self.config["migration"]["dry_run"])

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @property
    def legacy_host(self) -> str:
        wordpress = self.config["wordpress"]
        return wordpress.get("media_host") or url_host(wordpress.get("site_url") or "") or ""

    @property
    def source(self) -> Any:
        if self._source is None:
            wordpress = self.config["wordpress"]
            migration = self.config["migration"]
            if wordpress.get("xml_path"):
                self._source = WxrPostSource(wordpress["xml_path"])
            elif wordpress.get("site_url"):
                self._source = WordPressRestSource(
                    wordpress["site_url"],
                    session=self.session,
                    timeout=migration["timeout"],
                    max_retries=migration["max_retries"],
                    base_delay=migration["retry_base_delay"],
                )
            else:
                raise ValueError("Configure wordpress.xml_path or wordpress.site_url as the post source.")
        return self._source

    @property
    def uploader(self) -> Any:
        if self._uploader is None:
            self._uploader = R2Uploader.from_config(self.config["storage"], timeout=self.config["migration"]["timeout"])
        return self._uploader

    @property
    def store(self) -> Any:
        if self._store is None:
            migration = self.config["migration"]
            if migration.get("database_path"):
                self._store = DuckDBStore(migration["database_path"], table=self.config["supabase"]["table"])
            else:
                self._store = SupabaseStore(self.config["supabase"], session=self.session, timeout=migration["timeout"])
        return self._store

    @property
    def fetch_image(self) -> Any:
        if self._fetch_image is None:
            migration = self.config["migration"]
            self._fetch_image = partial(
                fetch_image_bytes,
                session=self.session,
                timeout=migration["timeout"],
                max_retries=migration["max_retries"],
                base_delay=migration["retry_base_delay"],
                limiter=RateLimiter(migration["requests_per_minute"]),
            )
        return self._fetch_image

    def build_migrator(self) -> PostMigrator:
        migration = self.config["migration"]
        storage = self.config["storage"]
        dry_run = self.dry_run
        return PostMigrator(
            legacy_host=self.legacy_host,
            destination_base=storage.get("public_url") or "",
            # Dry runs never touch storage or the store.
            uploader=None if dry_run else self.uploader,
            store=None if dry_run else self.store,
            fetch_image=self.fetch_image,
            key_prefix=storage.get("key_prefix") or "",
            check_existing=bool(migration["check_existing"]),
            dry_run=dry_run,
            excerpt_length=migration["excerpt_length"],
            meta_description_length=migration["meta_description_length"],
            fallback_featured_image=migration["fallback_featured_image"],
            log=self.log_message,
            report_dir=self.report_dir,
        )

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------
    @staticmethod
    def _collect(futures: List["Future[MigrationOutcome]"]) -> List[MigrationOutcome]:
        wait(futures)
        return [f.result() for f in futures]

    def run(
        self,
        page_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        start_page: Optional[int] = None,
        *,
        stop_event: Optional[threading.Event] = None,
        max_duration: Optional[float] = None,
    ) -> MigrationSummary:
        """
        Migrate the corpus page by page and return the run summary.

        Pages are fetched sequentially; the posts of a page run on a thread
        pool with at most ``max_concurrency`` in flight.  The next page can
        be fetched while posts of the previous one are still running.  A
        failing post never stops the run.

        :param stop_event: When set, no further post is dispatched; posts
            already running finish and the summary has ``stopped_early``.
        :param max_duration: Deadline in seconds, with the same effect.
        :raises SourcePageError: when a page cannot be fetched.  It carries
            ``next_page`` for resuming with ``start_page`` and the summary
            of the posts migrated so far.
        """
        migration = self.config["migration"]
        page_size = int(migration["page_size"] if page_size is None else page_size)
        max_concurrency = int(migration["max_concurrency"] if max_concurrency is None else max_concurrency)
        page = int(migration["start_page"] if start_page is None else start_page)
        if max_duration is None:
            max_duration = migration.get("max_duration")
        if page_size < 1 or max_concurrency < 1:
            raise ValueError("page_size and max_concurrency must be at least 1")

        deadline = time.monotonic() + float(max_duration) if max_duration else None

        def should_stop() -> bool:
            if stop_event is not None and stop_event.is_set():
                return True
            return deadline is not None and time.monotonic() >= deadline

        migrator = self.build_migrator()
        source = self.source
        slots = threading.BoundedSemaphore(max_concurrency)
        futures: List["Future[MigrationOutcome]"] = []
        pages_fetched = 0
        stopped = False

        mode = "dry run" if self.dry_run else "live run"
        self.log_message(
            f"Starting {mode} at page {page} (page_size={page_size}, max_concurrency={max_concurrency})"
        )

        with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="migrate") as pool:
            while True:
                if should_stop():
                    stopped = True
                    break
                try:
                    posts = source.fetch_posts_page(page, page_size)
                except SourceFetchError as e:
                    self.log_message(f"Source page {page} failed: {e}", level="ERROR")
                    summary = MigrationSummary.from_outcomes(
                        self._collect(futures), pages_fetched=pages_fetched, next_page=page
                    )
                    raise SourcePageError(
                        f"Could not fetch page {page}: {e}",
                        pages_completed=pages_fetched,
                        next_page=page,
                        summary=summary,
                    ) from e
                pages_fetched += 1
                self.log_message(f"Page {page}: {len(posts)} posts")

                for post in posts:
                    slots.acquire()
                    if should_stop():
                        slots.release()
                        stopped = True
                        break
                    future = pool.submit(migrator.migrate, post)
                    future.add_done_callback(lambda _f: slots.release())
                    futures.append(future)
                if stopped:
                    break
                page += 1
                if len(posts) < page_size:
                    break

            outcomes = self._collect(futures)

        summary = MigrationSummary.from_outcomes(
            outcomes, pages_fetched=pages_fetched, next_page=page, stopped_early=stopped
        )
        if stopped:
            self.log_message(f"Run stopped early; resume with start_page={page}", level="WARNING")
        self.log_message(
            f"Finished: {summary.succeeded}/{summary.total} posts migrated, {summary.failed} failed, "
            f"{summary.images_migrated} images re-hosted, {summary.images_failed} left on legacy host"
        )
        for slug, reason in summary.failures:
            self.log_message(f"Failed post '{slug}': {reason}", level="ERROR")

        new_site_url = migration.get("new_site_url")
        if not self.dry_run and new_site_url:
            path = generate_redirects_csv(
                outcomes,
                new_base=new_site_url,
                blog_path=migration["blog_path"],
                old_domain=self.config["wordpress"].get("site_url") or None,
                out_path=os.path.join(self.report_dir, "redirect_map.csv"),
            )
            self.log_message(f"Redirect map written to {path}")
        return summary

    def preview(self, page_size: int = 20, start_page: int = 0, max_pages: int = 1) -> List[Dict[str, Any]]:
        """List posts of the first pages without fetching images or writing anything."""
        rows: List[Dict[str, Any]] = []
        for page in range(start_page, start_page + max_pages):
            posts = self.source.fetch_posts_page(page, page_size)
            for post in posts:
                rows.append(
                    {
                        "slug": post.slug,
                        "title": post.title,
                        "author": post.author_name,
                        "categories": post.categories,
                        "published_at": post.published_at.isoformat() if post.published_at else None,
                        "content_length": len(post.content),
                        "image_count": len(extract_image_urls(post.content)),
                    }
                )
            if len(posts) < page_size:
                break
        return rows
