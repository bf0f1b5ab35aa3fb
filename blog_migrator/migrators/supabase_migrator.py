"""
Destination stores for normalized posts.

Both stores expose ``upsert_post(post)``, keyed by the post slug, with
insert-or-replace semantics so a migration can be rerun safely.

* :class:`SupabaseStore` writes through the Supabase PostgREST endpoint
  (``POST /rest/v1/<table>?on_conflict=slug`` with
  ``Prefer: resolution=merge-duplicates``).
* :class:`DuckDBStore` keeps the table in a local DuckDB file, which is
  handy for rehearsal runs and for tests.

Failures are translated into :class:`StoreUnavailableError` (network,
timeouts, 5xx, database errors) or :class:`PostValidationError` (the record
itself was rejected).  Stores never retry; a failed upsert is reported
for the post and the run moves on.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Dict, List, Optional

import duckdb
import requests

from blog_migrator.models.post import NormalizedPost
from blog_migrator.utils.errors import PostValidationError, StoreUnavailableError

DEFAULT_TABLE = "blog_posts"


def supabase_headers(cfg: Dict[str, str]) -> Dict[str, str]:
    """
    Construct the headers required for Supabase REST requests.

    :param cfg: A configuration dictionary with the ``service_role_key``.
    :return: A dictionary of headers including ``apikey`` and Authorization.
    """
    key = cfg.get("service_role_key", "")
    return {
        "apikey": key,
        "Authorization": f"Bearer {key}",
    }


class SupabaseStore:
    """Upserts posts into a Supabase table over PostgREST."""

    def __init__(
        self,
        cfg: Dict[str, Any],
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.cfg = cfg
        self.base_url = (cfg.get("url") or "").rstrip("/")
        self.table = cfg.get("table") or DEFAULT_TABLE
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def upsert_post(self, post: NormalizedPost) -> None:
        """
        Insert or replace ``post`` by slug.

        :raises PostValidationError: when Supabase rejects the record (4xx).
        :raises StoreUnavailableError: on network errors, timeouts or 5xx.
        """
        headers = {
            **supabase_headers(self.cfg),
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }
        try:
            resp = self.session.post(
                self.endpoint,
                params={"on_conflict": "slug"},
                headers=headers,
                data=json.dumps(post.to_record()),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StoreUnavailableError(f"Supabase unreachable: {e}") from e

        if resp.status_code >= 500:
            raise StoreUnavailableError(f"Supabase returned {resp.status_code}: {resp.text[:200]}")
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("message") or resp.text
            except ValueError:
                detail = resp.text
            raise PostValidationError(f"Supabase rejected '{post.slug}' ({resp.status_code}): {detail}")


class DuckDBStore:
    """Local DuckDB table with the same upsert contract as :class:`SupabaseStore`."""

    def __init__(self, path: str = ":memory:", *, table: str = DEFAULT_TABLE) -> None:
        self.path = path
        self.table = table
        self._lock = threading.Lock()
        self._con = duckdb.connect(database=path, read_only=False)
        self._con.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                slug VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                content VARCHAR,
                excerpt VARCHAR,
                reading_time INTEGER,
                featured_image VARCHAR,
                author_name VARCHAR,
                published_at TIMESTAMP,
                categories VARCHAR,
                tags VARCHAR,
                meta_title VARCHAR,
                meta_description VARCHAR,
                image_urls VARCHAR
            )
            """
        )

    def upsert_post(self, post: NormalizedPost) -> None:
        values = [
            post.slug,
            post.title,
            post.content,
            post.excerpt,
            post.reading_time,
            post.featured_image,
            post.author_name,
            post.published_at.replace(tzinfo=None) if post.published_at else None,
            json.dumps(post.categories),
            json.dumps(post.tags),
            post.meta_title,
            post.meta_description,
            json.dumps(post.image_urls),
        ]
        try:
            with self._lock:
                self._con.execute(
                    f"INSERT OR REPLACE INTO {self.table} VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )
        except duckdb.ConstraintException as e:
            raise PostValidationError(f"DuckDB rejected '{post.slug}': {e}") from e
        except duckdb.Error as e:
            raise StoreUnavailableError(f"DuckDB write failed: {e}") from e

    def get_post(self, slug: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            cur = self._con.execute(f"SELECT * FROM {self.table} WHERE slug = ?", [slug])
            row = cur.fetchone()
            if row is None:
                return None
            columns = [d[0] for d in cur.description]
        record = dict(zip(columns, row))
        for name in ("categories", "tags", "image_urls"):
            record[name] = json.loads(record[name]) if record.get(name) else []
        return record

    def count(self) -> int:
        with self._lock:
            return self._con.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0]

    def slugs(self) -> List[str]:
        with self._lock:
            return [r[0] for r in self._con.execute(f"SELECT slug FROM {self.table} ORDER BY slug").fetchall()]

    def close(self) -> None:
        with self._lock:
            self._con.close()
