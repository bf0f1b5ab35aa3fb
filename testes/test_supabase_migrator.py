import json
import os
import sys
from datetime import datetime, timezone

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
import requests

from blog_migrator.migrators.supabase_migrator import SupabaseStore, supabase_headers
from blog_migrator.models.post import NormalizedPost
from blog_migrator.utils.errors import PostValidationError, StoreUnavailableError
from fakes import FakeSession, make_response

CFG = {"url": "https://proj.supabase.co/", "service_role_key": "service-key", "table": "blog_posts"}


def make_record(**kwargs):
    fields = {
        "slug": "hello",
        "title": "Hello",
        "content": "<p>Hello</p>",
        "excerpt": "Hello",
        "reading_time": 1,
        "published_at": datetime(2022, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        "categories": ["News"],
        "image_urls": ["https://media.example.com/a.jpg"],
    }
    fields.update(kwargs)
    return NormalizedPost(**fields)


def test_supabase_headers():
    assert supabase_headers(CFG) == {"apikey": "service-key", "Authorization": "Bearer service-key"}


def test_supabase_upsert_request_shape():
    session = FakeSession(make_response(201))
    SupabaseStore(CFG, session=session).upsert_post(make_record())

    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "https://proj.supabase.co/rest/v1/blog_posts"
    assert kwargs["params"] == {"on_conflict": "slug"}
    assert kwargs["headers"]["Prefer"] == "resolution=merge-duplicates,return=minimal"
    assert kwargs["headers"]["apikey"] == "service-key"
    body = json.loads(kwargs["data"])
    assert body["slug"] == "hello"
    assert body["categories"] == ["News"]
    assert body["published_at"].startswith("2022-01-02T03:04:05")


def test_supabase_rejection_is_validation_error():
    session = FakeSession(make_response(400, json_body={"message": "null value in column \"title\""}))
    with pytest.raises(PostValidationError) as excinfo:
        SupabaseStore(CFG, session=session).upsert_post(make_record())
    assert "null value" in str(excinfo.value)


def test_supabase_outages_are_unavailable():
    with pytest.raises(StoreUnavailableError):
        SupabaseStore(CFG, session=FakeSession(make_response(503, b"busy"))).upsert_post(make_record())
    with pytest.raises(StoreUnavailableError):
        SupabaseStore(CFG, session=FakeSession(requests.Timeout("slow"))).upsert_post(make_record())


def test_duckdb_upsert_is_idempotent(tmp_path):
    pytest.importorskip("duckdb")
    from blog_migrator.migrators.supabase_migrator import DuckDBStore

    store = DuckDBStore(str(tmp_path / "posts.duckdb"))
    store.upsert_post(make_record())
    store.upsert_post(make_record())
    store.upsert_post(make_record(slug="other", title="Other"))
    assert store.count() == 2
    assert store.slugs() == ["hello", "other"]

    store.upsert_post(make_record(title="Hello again", tags=["jazz"]))
    record = store.get_post("hello")
    assert store.count() == 2
    assert record["title"] == "Hello again"
    assert record["tags"] == ["jazz"]
    assert record["categories"] == ["News"]
    assert record["image_urls"] == ["https://media.example.com/a.jpg"]
    assert record["published_at"] == datetime(2022, 1, 2, 3, 4, 5)
    assert store.get_post("missing") is None
    store.close()
