import csv
import os
import sys
import threading
import time

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from blog_migrator.migration_tool import BlogMigrationTool
from blog_migrator.models.post import SourcePost
from blog_migrator.utils.errors import SourcePageError, StoreUnavailableError
from fakes import FakeSource, FakeStore, FakeUploader, fetch_from

LEGACY = "https://blog.example.com/wp-content/uploads"
CDN = "https://media.example.com"


def make_posts(n):
    return [
        SourcePost(
            slug=f"post-{i}",
            title=f"Post {i}",
            content=f'<p>Body {i}</p><img src="{LEGACY}/2020/img-{i}.jpg">',
            permalink=f"https://blog.example.com/post-{i}/",
        )
        for i in range(n)
    ]


def make_tool(tmp_path, posts, *, store=None, source=None, **migration):
    config = {
        "wordpress": {"site_url": "https://blog.example.com", "media_host": "blog.example.com"},
        "storage": {"public_url": CDN},
        "migration": {"report_dir": str(tmp_path), "check_existing": False, **migration},
    }
    table = {f"{LEGACY}/2020/img-{i}.jpg": b"IMG" for i in range(len(posts))}
    return BlogMigrationTool(
        config,
        source=source or FakeSource(posts),
        uploader=FakeUploader(CDN),
        store=store if store is not None else FakeStore(),
        fetch_image=fetch_from(table),
    )


class SlugFailingStore(FakeStore):
    def __init__(self, failing):
        super().__init__()
        self.failing = set(failing)

    def upsert_post(self, post):
        if post.slug in self.failing:
            raise StoreUnavailableError(f"cannot write {post.slug}")
        super().upsert_post(post)


class SlowStore(FakeStore):
    """Tracks the highest number of concurrent upserts."""

    def __init__(self, delay=0.02):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._count_lock = threading.Lock()

    def upsert_post(self, post):
        with self._count_lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self._count_lock:
            self.active -= 1
        super().upsert_post(post)


def test_pages_are_fetched_until_short_page(tmp_path):
    posts = make_posts(5)
    source = FakeSource(posts)
    store = FakeStore()
    tool = make_tool(tmp_path, posts, source=source, store=store)

    summary = tool.run(page_size=2, max_concurrency=3)

    assert source.fetches == [0, 1, 2]
    assert summary.total == 5
    assert summary.succeeded == 5
    assert summary.failed == 0
    assert summary.images_migrated == 5
    assert summary.pages_fetched == 3
    assert summary.next_page == 3
    assert summary.stopped_early is False
    assert sorted(store.records) == [f"post-{i}" for i in range(5)]


def test_exact_multiple_ends_on_empty_page(tmp_path):
    posts = make_posts(4)
    source = FakeSource(posts)
    summary = make_tool(tmp_path, posts, source=source).run(page_size=2, max_concurrency=2)
    assert source.fetches == [0, 1, 2]
    assert summary.total == 4


def test_start_page_skips_earlier_pages(tmp_path):
    posts = make_posts(5)
    source = FakeSource(posts)
    summary = make_tool(tmp_path, posts, source=source).run(page_size=2, start_page=1)
    assert source.fetches == [1, 2]
    assert summary.total == 3


def test_failed_post_does_not_halt_run(tmp_path):
    posts = make_posts(5)
    tool = make_tool(tmp_path, posts, store=SlugFailingStore({"post-1", "post-3"}))

    summary = tool.run(page_size=2, max_concurrency=2)

    assert summary.total == 5
    assert summary.succeeded == 3
    assert summary.failed == 2
    assert sorted(slug for slug, _ in summary.failures) == ["post-1", "post-3"]
    assert all("cannot write" in reason for _, reason in summary.failures)


def test_source_failure_is_resumable(tmp_path):
    posts = make_posts(5)
    tool = make_tool(tmp_path, posts, source=FakeSource(posts, fail_on_page=1))

    with pytest.raises(SourcePageError) as excinfo:
        tool.run(page_size=2, max_concurrency=2)

    err = excinfo.value
    assert err.pages_completed == 1
    assert err.next_page == 1
    assert err.summary.total == 2
    assert err.summary.succeeded == 2


def test_stop_event_lets_in_flight_posts_finish(tmp_path):
    posts = make_posts(5)
    stop = threading.Event()

    class StoppingStore(FakeStore):
        def upsert_post(self, post):
            super().upsert_post(post)
            stop.set()

    store = StoppingStore()
    summary = make_tool(tmp_path, posts, store=store).run(page_size=2, max_concurrency=1, stop_event=stop)

    assert summary.stopped_early is True
    assert summary.total == 1
    assert summary.succeeded == 1
    assert summary.next_page == 0
    assert list(store.records) == ["post-0"]


def test_deadline_stops_before_dispatch(tmp_path):
    posts = make_posts(3)
    source = FakeSource(posts)
    summary = make_tool(tmp_path, posts, source=source).run(page_size=2, max_duration=1e-9)
    assert summary.stopped_early is True
    assert summary.total == 0
    assert source.fetches == []


def test_concurrency_bound_is_respected(tmp_path):
    posts = make_posts(12)
    store = SlowStore()
    summary = make_tool(tmp_path, posts, store=store).run(page_size=5, max_concurrency=3)
    assert summary.succeeded == 12
    assert 1 <= store.peak <= 3


def test_invalid_arguments(tmp_path):
    tool = make_tool(tmp_path, make_posts(1))
    with pytest.raises(ValueError):
        tool.run(page_size=0)


def test_dry_run_touches_nothing(tmp_path):
    posts = make_posts(3)
    store = FakeStore()
    tool = make_tool(tmp_path, posts, store=store, dry_run=True, new_site_url="https://www.example.com")

    summary = tool.run(page_size=2)

    assert summary.succeeded == 3
    assert summary.images_migrated == 0
    assert store.records == {}
    assert not os.path.exists(tmp_path / "redirect_map.csv")


def test_live_run_writes_redirect_map(tmp_path):
    posts = make_posts(2)
    tool = make_tool(tmp_path, posts, new_site_url="https://www.example.com")
    tool.run(page_size=5)

    with open(tmp_path / "redirect_map.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["OldURL", "NewURL"]
    assert sorted(rows[1:]) == [
        ["https://blog.example.com/post-0/", "https://www.example.com/blog/post-0"],
        ["https://blog.example.com/post-1/", "https://www.example.com/blog/post-1"],
    ]


def test_run_log_is_written(tmp_path):
    posts = make_posts(1)
    make_tool(tmp_path, posts).run()
    with open(tmp_path / "migration.log", encoding="utf-8") as f:
        log = f.read()
    assert "INFO: Starting live run at page 0" in log
    assert "1/1 posts migrated" in log


def test_preview_lists_posts_without_writing(tmp_path):
    posts = make_posts(3)
    store = FakeStore()
    rows = make_tool(tmp_path, posts, store=store).preview(page_size=2, max_pages=5)
    assert [r["slug"] for r in rows] == ["post-0", "post-1", "post-2"]
    assert rows[0]["image_count"] == 1
    assert rows[0]["content_length"] == len(posts[0].content)
    assert store.records == {}


def test_config_defaults_and_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("CLOUDFLARE_R2_ADMIN_BUCKET", "media")
    monkeypatch.delenv("WORDPRESS_SITE_URL", raising=False)
    tool = BlogMigrationTool({"migration": {"report_dir": str(tmp_path)}})
    assert tool.config["supabase"]["url"] == "https://proj.supabase.co"
    assert tool.config["supabase"]["table"] == "blog_posts"
    assert tool.config["storage"]["bucket"] == "media"
    assert tool.config["migration"]["page_size"] == 20
    assert tool.config["migration"]["max_concurrency"] == 5
    assert tool.legacy_host == ""


def test_store_selection(tmp_path):
    pytest.importorskip("duckdb")
    from blog_migrator.migrators.supabase_migrator import DuckDBStore, SupabaseStore

    local = BlogMigrationTool({"migration": {"database_path": str(tmp_path / "b.duckdb"), "report_dir": str(tmp_path)}})
    assert isinstance(local.store, DuckDBStore)
    local.store.close()
    remote = BlogMigrationTool({"supabase": {"url": "https://p.supabase.co"}, "migration": {"report_dir": str(tmp_path)}})
    assert isinstance(remote.store, SupabaseStore)
    assert remote.store.endpoint == "https://p.supabase.co/rest/v1/blog_posts"


def test_uploader_from_storage_config(tmp_path):
    from blog_migrator.migrators.media_migrator import R2Uploader

    tool = BlogMigrationTool(
        {
            "storage": {
                "account_id": "acct",
                "access_key_id": "AKID",
                "secret_access_key": "secret",
                "bucket": "media",
                "public_url": "https://media.example.com/",
                "key_prefix": "blog",
            },
            "migration": {"report_dir": str(tmp_path), "timeout": 7},
        }
    )
    uploader = tool.uploader
    assert isinstance(uploader, R2Uploader)
    assert uploader.endpoint_url == "https://acct.r2.cloudflarestorage.com"
    assert uploader.bucket == "media"
    assert uploader.timeout == 7
    assert uploader.public_url_for("blog/2020/a.jpg") == "https://media.example.com/blog/2020/a.jpg"
