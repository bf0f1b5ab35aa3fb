"""In-memory stand-ins for the HTTP layer and the pipeline collaborators."""

import json
import threading

import requests

from blog_migrator.utils.errors import SourceFetchError, UploadError


def make_response(status_code=200, content=b"", *, url="https://example.test/", headers=None, json_body=None):
    """Build a real ``requests.Response`` without touching the network."""
    resp = requests.Response()
    resp.status_code = status_code
    if json_body is not None:
        content = json.dumps(json_body).encode("utf-8")
        headers = {"Content-Type": "application/json", **(headers or {})}
    resp._content = content
    resp.url = url
    resp.reason = "OK" if status_code < 400 else "Error"
    resp.headers.update(headers or {})
    resp.encoding = "utf-8"
    return resp


class FakeSession:
    """Records calls and replays queued responses; the last one repeats."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def head(self, url, **kwargs):
        return self._next("HEAD", url, **kwargs)

    def put(self, url, **kwargs):
        return self._next("PUT", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


class FakeUploader:
    """Stores uploads in a dict keyed by object key."""

    def __init__(self, public_url="https://media.example.com", existing=(), fail_keys=()):
        self.public_url = public_url
        self.objects = {key: b"" for key in existing}
        self.fail_keys = set(fail_keys)
        self.uploads = []
        self._lock = threading.Lock()

    def upload(self, data, key, content_type="image/jpeg"):
        if key in self.fail_keys:
            raise UploadError(f"rejected {key}")
        with self._lock:
            self.uploads.append(key)
            self.objects[key] = data
        return f"{self.public_url}/{key}"

    def exists(self, key):
        return key in self.objects


class FakeStore:
    """Keeps upserted records by slug; can be told to fail."""

    def __init__(self, error=None):
        self.records = {}
        self.error = error
        self._lock = threading.Lock()

    def upsert_post(self, post):
        if self.error is not None:
            raise self.error
        with self._lock:
            self.records[post.slug] = post


class FakeSource:
    """Serves ``posts`` in pages and counts fetches."""

    def __init__(self, posts, fail_on_page=None):
        self.posts = list(posts)
        self.fail_on_page = fail_on_page
        self.fetches = []

    def fetch_posts_page(self, page_index, page_size):
        self.fetches.append(page_index)
        if self.fail_on_page is not None and page_index == self.fail_on_page:
            raise SourceFetchError(f"page {page_index} unavailable")
        start = page_index * page_size
        return self.posts[start:start + page_size]


def fetch_from(table):
    """``fetch_image`` callable answering from ``{url: bytes | Exception}``."""

    def fetch(url):
        item = table[url]
        if isinstance(item, Exception):
            raise item
        return item, "image/jpeg"

    return fetch
